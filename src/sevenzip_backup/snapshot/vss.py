# pyright: standard

"""sevenzip-backup: sevenzip_backup/snapshot/vss.py
Volume Shadow Copy handling through diskshadow.
"""

import locale
import logging
import re
import subprocess
import tempfile
import time
from pathlib import Path, PureWindowsPath
from typing import Callable, Optional

from .. import __util__

logger = logging.getLogger(__name__)

_SHADOW_ID_RE = re.compile(r"\* Shadow copy ID = (\{[0-9A-Fa-f-]+\})")
_ORIGINAL_VOLUME_RE = re.compile(r"Original volume name: .*\[([A-Za-z]):\\\]")
_DEVICE_RE = re.compile(r"Shadow copy device name: (\S+)")


def volume_of(path: str) -> Optional[str]:
    """Drive letter (upper case, no colon) of a Windows path, if any."""
    drive = PureWindowsPath(path).drive
    if len(drive) == 2 and drive[1] == ":":
        return drive[0].upper()
    return None


def parse_diskshadow_output(output: str) -> dict[str, tuple[str, str]]:
    """Map drive letter -> (shadow id, device path) from ``diskshadow`` output."""
    shadows: dict[str, tuple[str, str]] = {}
    shadow_id = volume = None
    for line in output.splitlines():
        line = line.strip()
        if match := _SHADOW_ID_RE.search(line):
            shadow_id, volume = match.group(1), None
        elif match := _ORIGINAL_VOLUME_RE.search(line):
            volume = match.group(1).upper()
        elif (match := _DEVICE_RE.search(line)) and shadow_id and volume:
            shadows[volume] = (shadow_id, match.group(1))
            shadow_id = volume = None
    return shadows


def shadow_path_for(path: str, device: str) -> str:
    """Rewrite ``C:\\Data`` into ``<device>\\Data``."""
    relative = PureWindowsPath(path).relative_to(PureWindowsPath(path).anchor)
    device = device.rstrip("\\")
    return f"{device}\\{relative}" if str(relative) != "." else f"{device}\\"


def script_encoding() -> str:
    """Code page diskshadow reads its script files in."""
    if __util__.is_windows():
        return "mbcs"
    return locale.getpreferredencoding(False)


def _read_log(log_path: Path) -> str:
    return log_path.read_text(encoding="utf-8", errors="replace")


class VssManager:
    """Create and remove shadow copies for the volumes of a set of paths."""

    def __init__(
        self,
        diskshadow: str = "diskshadow",
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.diskshadow = diskshadow
        self._popen = popen
        self._sleep = sleep
        self.shadow_ids: list[str] = []

    def _write_script(self, lines: list[str]) -> Path:
        encoding = script_encoding()
        try:
            data = ("\r\n".join(lines) + "\r\n").encode(encoding)
        except UnicodeEncodeError as e:
            raise __util__.SourceResolutionError(
                f"diskshadow script cannot be written in the {encoding} code page: {e}"
            ) from e
        with tempfile.NamedTemporaryFile("wb", suffix=".dsh", delete=False) as script:
            script.write(data)
            return Path(script.name)

    def _run_script(
        self,
        lines: list[str],
        timeout: int,
        interval: int,
        on_failure: Optional[Callable[[str], object]] = None,
    ) -> str:
        """Run a diskshadow script and return its output.

        ``on_failure`` receives whatever output was logged before a failure
        or timeout, so already created shadows can still be tracked.
        """
        script_path = self._write_script(lines)
        log_path = script_path.with_suffix(".log")
        try:
            logger.debug("diskshadow script %s:\n%s", script_path, "\n".join(lines))
            with open(log_path, "w", encoding="utf-8") as log_file:
                try:
                    process = self._popen(
                        [self.diskshadow, "/s", str(script_path)],
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        text=True,
                    )
                except FileNotFoundError as e:
                    raise __util__.SourceResolutionError(
                        f"diskshadow is not available: {e}"
                    ) from e
            deadline = time.monotonic() + timeout
            while process.poll() is None:
                if time.monotonic() >= deadline:
                    process.kill()
                    process.wait()
                    if on_failure is not None:
                        on_failure(_read_log(log_path))
                    raise __util__.SnapshotTimeoutError(
                        f"diskshadow did not finish within {timeout} seconds"
                    )
                self._sleep(max(interval, 0))
            output = _read_log(log_path)
            if process.returncode != 0:
                logger.error("diskshadow failed (exit %d):\n%s", process.returncode, output)
                if on_failure is not None:
                    on_failure(output)
                raise __util__.SourceResolutionError(
                    f"diskshadow exited with code {process.returncode}"
                )
            return output
        finally:
            for path in (script_path, log_path):
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Could not remove diskshadow file %s: %s", path, e)

    def _track(self, output: str) -> dict[str, tuple[str, str]]:
        """Remember every shadow listed in ``output`` for later removal."""
        shadows = parse_diskshadow_output(output)
        for shadow_id, _ in shadows.values():
            if shadow_id not in self.shadow_ids:
                self.shadow_ids.append(shadow_id)
        return shadows

    def create_shadow_copies(
        self,
        paths: list[str],
        context_option: str,
        cache_file_path: str,
        timeout_seconds: int,
        interval_seconds: int,
    ) -> Optional[dict[str, str]]:
        """Create one shadow copy per volume and map each path to its shadow.

        Returns None when no shadow copy could be created. Raises
        SnapshotTimeoutError if diskshadow does not finish in time.
        """
        volumes = sorted({v for v in (volume_of(p) for p in paths) if v})
        if not volumes:
            logger.warning("No local volumes found in %s; VSS not possible", paths)
            return None

        lines = [
            f"SET CONTEXT {context_option}",
            f'SET METADATA CACHE "{cache_file_path}"',
            "SET VERBOSE ON",
            "BEGIN BACKUP",
        ]
        lines += [f"ADD VOLUME {v}: ALIAS SZB_{v}" for v in volumes]
        lines += ["CREATE", "END BACKUP"]

        logger.info("Creating shadow copies for volume(s): %s", ", ".join(volumes))
        output = self._run_script(
            lines, timeout_seconds, interval_seconds, on_failure=self._track
        )
        shadows = self._track(output)

        mapping = {}
        for path in paths:
            volume = volume_of(path)
            if volume in shadows:
                mapping[path] = shadow_path_for(path, shadows[volume][1])
                logger.debug("Shadow path for %s: %s", path, mapping[path])
        return mapping or None

    def remove_shadow_copies(self) -> None:
        """Delete every shadow copy created by this manager."""
        if not self.shadow_ids:
            return
        lines = [f"DELETE SHADOWS ID {shadow_id}" for shadow_id in self.shadow_ids]
        logger.info("Removing %d shadow copy(ies)", len(self.shadow_ids))
        try:
            self._run_script(lines, timeout=120, interval=1)
        except __util__.AbortError as e:
            logger.error("Failed to remove shadow copies %s: %s", self.shadow_ids, e)
            raise
        self.shadow_ids.clear()
