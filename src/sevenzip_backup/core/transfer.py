# pyright: standard

"""sevenzip-backup: sevenzip_backup/core/transfer.py
Send the staged files of one backup instance to every configured target.

Targets are processed in order. A target whose provider type is unknown
is recorded as failed and the next target is tried. The first failed file
transfer stops the whole stage: remaining files and remaining targets are
not attempted. Local files are deleted only after every file reached every
target.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ..config.schema import EffectiveJobConfig
from ..providers import TargetProvider, TransferContext, choose_provider
from . import staging
from .report import TargetTransferRecord

logger = logging.getLogger(__name__)

SUCCESS = "Success"
FAILED = "Failed"
SKIPPED = "Skipped"


@dataclass
class TransferResult:
    success: bool
    records: list[TargetTransferRecord] = field(default_factory=list)
    local_files_deleted: bool = False
    error_message: str = ""

    @property
    def report_patch(self) -> dict[str, Any]:
        if not self.records:
            status = "Not Configured"
        elif self.success:
            status = SUCCESS
        elif all(r.status == SKIPPED for r in self.records):
            status = SKIPPED
        else:
            status = FAILED
        return {
            "transfer_status": status,
            "target_transfers": list(self.records),
            "local_files_deleted": self.local_files_deleted,
        }


def _delete_local_files(files: list[Path], simulate: bool) -> bool:
    """Delete staged files. Failures are logged and do not change the verdict."""
    all_deleted = True
    for path in files:
        if simulate:
            logger.info("SIMULATE: would delete local file %s", path)
            continue
        try:
            path.unlink()
            logger.debug("Deleted local file %s", path)
        except OSError as e:
            all_deleted = False
            logger.warning("Could not delete local file %s: %s", path, e)
    return all_deleted


def transfer_to_targets(
    effective: EffectiveJobConfig,
    archive_path: Path | str,
    provider_factory: Callable[[str], Optional[TargetProvider]] = choose_provider,
) -> TransferResult:
    """Transfer the backup instance of ``archive_path`` to the job's targets.

    Args:
        effective: Effective job configuration (targets, deletion flag)
        archive_path: The archive, or the first volume of a split archive
        provider_factory: Maps a target type name to a provider instance

    Returns:
        TransferResult; ``success`` is True only when every file reached
        every target
    """
    targets = effective.resolved_targets
    if not targets:
        logger.debug("No remote targets configured for %s", effective.job_name)
        return TransferResult(True)

    archive_path = Path(archive_path)
    files = staging.discover_staged_files(archive_path, effective.checksum_algorithm)
    if not files and effective.simulate:
        files = [archive_path]
    if not files:
        error = f"No local files found for {archive_path.name}; nothing to transfer"
        logger.error(error)
        records = [
            TargetTransferRecord(t.name, t.type, SKIPPED, error=error) for t in targets
        ]
        return TransferResult(False, records, error_message=error)

    logger.info(
        "Transferring %d file(s) to %d target(s): %s",
        len(files),
        len(targets),
        ", ".join(f.name for f in files),
    )
    context = TransferContext(
        job_name=effective.job_name,
        archive_filename=archive_path.name,
        simulate=effective.simulate,
    )

    result = TransferResult(True)
    for target in targets:
        provider = provider_factory(target.type)
        if provider is None:
            error = f"No transfer provider for target type '{target.type}'"
            logger.error("Target '%s': %s", target.name, error)
            result.records.append(TargetTransferRecord(target.name, target.type, FAILED, error=error))
            result.success = False
            result.error_message = result.error_message or error
            continue

        target_failed = False
        for local_file in files:
            outcome = provider.transfer(local_file, target, context)
            result.records.append(
                TargetTransferRecord(
                    target.name,
                    target.type,
                    SUCCESS if outcome.success else FAILED,
                    file_name=local_file.name,
                    remote_path=outcome.remote_path,
                    error=outcome.error_message,
                    duration_seconds=round(outcome.duration_seconds, 2),
                    size_bytes=outcome.size_bytes,
                )
            )
            if not outcome.success:
                error = (
                    f"Transfer of {local_file.name} to '{target.name}' failed: "
                    f"{outcome.error_message}"
                )
                logger.error(error)
                result.success = False
                result.error_message = result.error_message or error
                target_failed = True
                break
            logger.info("%s -> %s (%s)", local_file.name, outcome.remote_path, target.name)

        if target_failed:
            logger.error("Stopping remote transfers after failure on '%s'", target.name)
            break

    if not result.success:
        logger.warning("Keeping local files because not every transfer succeeded")
    elif effective.delete_local_archive_after_transfer:
        result.local_files_deleted = _delete_local_files(files, effective.simulate)
    return result
