# pyright: standard

"""sevenzip-backup: sevenzip_backup/__util__.py
Common utility code shared between modules.
"""

import ctypes
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


class AbortError(Exception):
    """Exception where a job should abort.

    ``report_patch`` carries whatever the failing stage learned, so the job
    report still records it.
    """

    def __init__(self, message: str = "", report_patch: dict | None = None) -> None:
        super().__init__(message)
        self.report_patch = report_patch or {}


class CredentialError(AbortError):
    """The archive password could not be obtained."""


class HookError(AbortError):
    """A user supplied hook script failed."""


class SourceResolutionError(AbortError):
    """Snapshot or shadow copy could not provide stable source paths."""


class SnapshotTimeoutError(SourceResolutionError):
    """A snapshot or shadow copy did not become ready before its timeout."""


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"{f'--[ {caption} ]':-<50}"


def safe_filename(name: str) -> str:
    """Replace characters that are awkward in file names with '_'."""
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)


def is_flag_true(value) -> bool:
    """Narrow boolean coercion used for config flags.

    Only ``True``, the string ``"true"`` (any case) and non-zero integers
    count as true. Everything else, including ``"yes"`` and ``1.0``, is false.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def is_windows() -> bool:
    return sys.platform == "win32"


def is_admin() -> bool:
    """Return True if the current process has administrator rights."""
    if is_windows():
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def free_space_gb(path: Path | str) -> float:
    """Free space in GiB on the volume holding ``path``."""
    usage = shutil.disk_usage(path)
    return usage.free / (1024**3)


def exec_subprocess(command, method="run", **kwargs):
    """Run a subprocess, logging the command line first.

    ``method`` selects the ``subprocess`` function to call.
    """
    logger.debug("Executing: %s", command)
    func = getattr(subprocess, method)
    try:
        return func(command, **kwargs)
    except FileNotFoundError as e:
        logger.error("Command not found: %s", command[0] if command else command)
        raise AbortError(f"Command not found: {e}") from e
