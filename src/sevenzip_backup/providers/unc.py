"""Copy staged files to a filesystem path or UNC share."""

import logging
import shutil
import time
from pathlib import Path

from ..config.schema import ResolvedTarget
from .common import TargetProvider, TransferContext, TransferOutcome

logger = logging.getLogger(__name__)


class UNCTargetProvider(TargetProvider):
    """Target type ``UNC``.

    TargetSpecificSettings:
        UNCRemotePath: Destination directory (``\\\\server\\share\\dir`` or any path)
        CreateJobNameSubdirectory: Put files under a directory named after the job
    """

    type_name = "UNC"

    def destination_dir(self, target: ResolvedTarget, context: TransferContext) -> Path:
        base = Path(str(self.required_setting(target, "UNCRemotePath")))
        subdir = self.job_subdirectory(target, context)
        return base / subdir if subdir else base

    def transfer(
        self, local_file: Path, target: ResolvedTarget, context: TransferContext
    ) -> TransferOutcome:
        try:
            destination = self.destination_dir(target, context) / local_file.name
        except ValueError as e:
            return TransferOutcome(False, error_message=str(e))

        if context.simulate:
            logger.info("SIMULATE: would copy %s to %s", local_file, destination)
            return TransferOutcome(True, remote_path=str(destination))

        start = time.monotonic()
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_file, destination)
            size = destination.stat().st_size
        except OSError as e:
            logger.error("Copy of %s to %s failed: %s", local_file, destination, e)
            return TransferOutcome(False, remote_path=str(destination), error_message=str(e))

        if size != local_file.stat().st_size:
            return TransferOutcome(
                False,
                remote_path=str(destination),
                error_message=f"Size mismatch after copy of {local_file.name}",
            )
        duration = time.monotonic() - start
        logger.debug("Copied %s (%d bytes) in %.1fs", local_file.name, size, duration)
        return TransferOutcome(True, str(destination), "", duration, size)
