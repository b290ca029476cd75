"""Shared structure of remote target providers."""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from .. import __util__
from ..config.schema import ResolvedTarget

logger = logging.getLogger(__name__)


@dataclass
class TransferContext:
    """What a provider may know about the job whose files it transfers."""

    job_name: str
    archive_filename: str = ""
    simulate: bool = False


@dataclass
class TransferOutcome:
    success: bool
    remote_path: str = ""
    error_message: str = ""
    duration_seconds: float = 0.0
    size_bytes: int = 0


class TargetProvider:
    """Generic structure of a remote target provider.

    Subclasses implement :meth:`transfer` and report problems through the
    returned :class:`TransferOutcome` rather than raising.
    """

    type_name = "generic"

    def transfer(
        self, local_file: Path, target: ResolvedTarget, context: TransferContext
    ) -> TransferOutcome:
        raise NotImplementedError

    @staticmethod
    def required_setting(target: ResolvedTarget, key: str) -> Any:
        value = target.specific.get(key)
        if value in (None, ""):
            raise ValueError(
                f"Target '{target.name}' is missing TargetSpecificSettings.{key}"
            )
        return value

    @staticmethod
    def job_subdirectory(target: ResolvedTarget, context: TransferContext) -> str:
        """Job name subdirectory, or '' when the target does not use one."""
        if __util__.is_flag_true(target.specific.get("CreateJobNameSubdirectory", False)):
            return __util__.safe_filename(context.job_name)
        return ""

    @staticmethod
    def remote_join(base: str, *parts: str) -> str:
        return str(PurePosixPath(base, *[p for p in parts if p]))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
