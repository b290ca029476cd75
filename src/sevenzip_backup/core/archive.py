# pyright: standard

"""sevenzip-backup: sevenzip_backup/core/archive.py
Create the local archive for one job and verify it.

The stages run in order and stop at the first fatal problem. Non-fatal
problems only lower the status:

1. free space check
2. archive and 7-Zip target names
3. removal of stale split volumes
4. 7-Zip archive run (with retries)
5. contents manifest and checksum or split volume manifest
6. integrity test
7. checksum verification
8. pin marker
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock

from .. import __util__, instance_lock_path
from ..config.schema import EffectiveJobConfig
from ..sevenzip import SevenZipRunner, build_archive_args
from ..sevenzip.runner import EXIT_SUCCESS, EXIT_WARNING
from . import checksum, staging
from .report import JobStatus

logger = logging.getLogger(__name__)


@dataclass
class LocalArchiveResult:
    status: JobStatus
    archive_path: Optional[Path] = None
    archive_filename: str = ""
    report_patch: dict[str, Any] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)
    error_message: str = ""


@dataclass
class ArchiveNames:
    """Final archive path and the path handed to 7-Zip.

    They differ only for split archives, where 7-Zip appends ``.001`` ...
    to the target and the first volume is the archive path.
    """

    archive_path: Path
    sevenzip_target: Path

    @property
    def archive_filename(self) -> str:
        return self.archive_path.name


def archive_names(effective: EffectiveJobConfig, when: datetime) -> ArchiveNames:
    destination = Path(effective.destination_dir)
    stem = f"{effective.base_filename} [{when.strftime(effective.archive_date_format)}]"
    if effective.is_split:
        target = destination / f"{stem}{effective.internal_archive_extension}"
        return ArchiveNames(target.with_name(target.name + ".001"), target)
    archive = destination / f"{stem}{effective.archive_extension}"
    return ArchiveNames(archive, archive)


def exit_code_status(exit_code: int, treat_warnings_as_success: bool) -> JobStatus:
    if exit_code == EXIT_SUCCESS:
        return JobStatus.SUCCESS
    if exit_code == EXIT_WARNING:
        return JobStatus.SUCCESS if treat_warnings_as_success else JobStatus.WARNINGS
    return JobStatus.FAILURE


class LocalArchiveProcessor:
    """Run the local archive stages for one effective job configuration."""

    def __init__(
        self,
        effective: EffectiveJobConfig,
        runner: Optional[SevenZipRunner] = None,
        now: Callable[[], datetime] = datetime.now,
        free_space: Callable[[Path], float] = __util__.free_space_gb,
    ) -> None:
        self.effective = effective
        self.runner = runner or SevenZipRunner(effective.seven_zip_path)
        self._now = now
        self._free_space = free_space
        self._result = LocalArchiveResult(JobStatus.SUCCESS)

    # Status bookkeeping

    def _degrade(self, status: JobStatus, message: str) -> None:
        if status is JobStatus.FAILURE:
            logger.error(message)
            if not self._result.error_message:
                self._result.error_message = message
        else:
            logger.warning(message)
        self._result.status = self._result.status.worst(status)
        self._result.messages.append(message)

    def _verification_failure(self, message: str) -> None:
        """Verification problems block transfer only when verification is required."""
        if self.effective.verify_local_archive_before_transfer:
            self._degrade(JobStatus.FAILURE, message)
        else:
            self._degrade(JobStatus.WARNINGS, message)

    @property
    def _failed(self) -> bool:
        return self._result.status is JobStatus.FAILURE

    def _patch(self, **values: Any) -> None:
        self._result.report_patch.update(values)

    # Stages

    def _check_free_space(self) -> None:
        minimum = self.effective.minimum_required_free_space_gb
        destination = Path(self.effective.destination_dir)
        if minimum <= 0 or not destination.exists():
            return
        free = self._free_space(destination)
        if free >= minimum:
            logger.debug("Free space on %s: %.2f GB", destination, free)
            return
        message = (
            f"Low disk space on {destination}: {free:.2f} GB free, "
            f"{minimum:.2f} GB required"
        )
        if self.effective.exit_on_low_space:
            self._degrade(JobStatus.FAILURE, message)
        else:
            self._degrade(JobStatus.WARNINGS, message)

    def _remove_stale_volumes(self, names: ArchiveNames) -> None:
        stale = staging.find_volumes(names.sevenzip_target)
        if not stale:
            return
        deleted = []
        for volume in stale:
            if self.effective.simulate:
                logger.info("SIMULATE: would delete stale volume %s", volume)
                continue
            try:
                volume.unlink()
                deleted.append(str(volume))
                logger.info("Deleted stale volume %s", volume)
            except OSError as e:
                self._degrade(JobStatus.WARNINGS, f"Could not delete stale volume {volume}: {e}")
        self._patch(stale_volumes_deleted=deleted)

    def _run_archiver(self, names: ArchiveNames, source_paths: list[str], password) -> None:
        effective = self.effective
        args = build_archive_args(
            effective, str(names.sevenzip_target), source_paths, has_password=bool(password)
        )
        result = self.runner.execute(
            args,
            effective.process_priority,
            effective.cpu_affinity,
            password,
            enable_retries=effective.enable_retries,
            max_attempts=effective.max_retry_attempts,
            delay_seconds=effective.retry_delay_seconds,
            treat_warnings_as_success=effective.treat_warnings_as_success,
        )
        self._patch(
            sevenzip_exit_code=result.exit_code,
            sevenzip_attempts=result.attempts,
            compression_seconds=round(result.elapsed_seconds, 2),
        )
        status = exit_code_status(result.exit_code, effective.treat_warnings_as_success)
        if status is JobStatus.FAILURE:
            self._degrade(
                JobStatus.FAILURE,
                f"7-Zip failed with exit code {result.exit_code} after "
                f"{result.attempts} attempt(s)",
            )
        elif status is JobStatus.WARNINGS:
            self._degrade(JobStatus.WARNINGS, "7-Zip completed with warnings (exit code 1)")
        else:
            logger.info(
                "7-Zip finished in %.1fs (exit code %d)", result.elapsed_seconds, result.exit_code
            )

        files = staging.primary_files(names.archive_path)
        self._patch(archive_size_bytes=sum(f.stat().st_size for f in files))

    def _write_contents_manifest(self, names: ArchiveNames, password) -> None:
        manifest = staging.contents_manifest_path(names.archive_path)
        try:
            entries = self.runner.list_contents(str(names.archive_path), password)
            checksum.write_contents_manifest(entries, manifest)
        except (__util__.AbortError, OSError) as e:
            self._degrade(JobStatus.WARNINGS, f"Contents manifest not generated: {e}")
            return
        self._patch(contents_manifest_path=str(manifest))

    def _write_checksums(self, names: ArchiveNames) -> Optional[Path]:
        effective = self.effective
        algorithm = effective.checksum_algorithm
        target = staging.checksum_path(names.archive_path, algorithm)
        if effective.is_split:
            if not (effective.generate_split_archive_manifest or effective.generate_archive_checksum):
                return None
            volumes = staging.find_volumes(names.sevenzip_target)
            try:
                failed = checksum.write_split_manifest(volumes, target, algorithm)
            except OSError as e:
                self._degrade(JobStatus.WARNINGS, f"Split volume manifest not written: {e}")
                return None
            if failed:
                self._degrade(
                    JobStatus.WARNINGS,
                    f"Checksum generation failed for volume(s): {', '.join(failed)}",
                )
            self._patch(checksum_algorithm=algorithm, checksum_file_path=str(target))
            return target

        if not effective.generate_archive_checksum:
            return None
        try:
            digest = checksum.write_checksum_file(names.archive_path, target, algorithm)
        except (OSError, ValueError) as e:
            self._degrade(JobStatus.WARNINGS, f"Archive checksum not generated: {e}")
            return None
        self._patch(
            checksum_algorithm=algorithm, checksum_value=digest, checksum_file_path=str(target)
        )
        return target

    def _test_archive(self, names: ArchiveNames, password) -> bool:
        """Returns True when the archive passed (or warning-tolerated) its test."""
        effective = self.effective
        if not names.archive_path.exists():
            self._verification_failure(
                f"Archive {names.archive_path} not found; integrity test not performed"
            )
            self._patch(archive_test_result="Not Performed (archive missing)")
            return False

        result = self.runner.test(
            str(names.archive_path),
            password,
            enable_retries=effective.enable_retries,
            max_attempts=effective.max_retry_attempts,
            delay_seconds=effective.retry_delay_seconds,
            treat_warnings_as_success=effective.treat_warnings_as_success,
        )
        passed = result.exit_code == EXIT_SUCCESS or (
            result.exit_code == EXIT_WARNING and effective.treat_warnings_as_success
        )
        self._patch(
            archive_tested=True,
            archive_test_result="PASSED" if passed else f"FAILED (exit code {result.exit_code})",
        )
        if passed:
            logger.info("Archive integrity test passed: %s", names.archive_filename)
        else:
            self._verification_failure(
                f"Archive integrity test failed with exit code {result.exit_code}"
            )
        return passed

    def _checksum_configured(self) -> bool:
        effective = self.effective
        if effective.is_split:
            return effective.generate_split_archive_manifest or effective.generate_archive_checksum
        return effective.generate_archive_checksum

    def _verify_checksums(self, checksum_file: Optional[Path]) -> None:
        if checksum_file is None:
            if self._checksum_configured():
                self._patch(checksum_verification_status="FAILED (checksum file missing)")
                self._verification_failure(
                    "Checksum verification failed: no checksum file was generated"
                )
            else:
                logger.warning("Checksum verification requested but no checksum was generated")
                self._patch(checksum_verification_status="Not Performed (no checksum generated)")
            return
        problems = checksum.verify_checksum_file(checksum_file, self.effective.checksum_algorithm)
        if problems:
            self._patch(checksum_verification_status="FAILED")
            self._verification_failure("Checksum verification failed: " + "; ".join(problems))
        else:
            logger.info("Checksum verification passed: %s", checksum_file.name)
            self._patch(checksum_verification_status="PASSED")

    def _pin(self, names: ArchiveNames) -> None:
        marker = staging.pin_path(names.archive_path)
        if self.effective.simulate:
            logger.info("SIMULATE: would pin %s", names.archive_filename)
            self._patch(pin_status="Simulated")
            return
        try:
            marker.write_text(
                f"Pinned {time.strftime('%Y-%m-%d %H:%M:%S')} on creation\n", encoding="utf-8"
            )
        except OSError as e:
            self._patch(pin_status="Failed")
            self._degrade(JobStatus.WARNINGS, f"Could not pin {names.archive_filename}: {e}")
            return
        logger.info("Pinned %s", names.archive_filename)
        self._patch(pin_status="Pinned")

    def _simulate(self, names: ArchiveNames, source_paths: list[str], password) -> None:
        args = build_archive_args(
            self.effective, str(names.sevenzip_target), source_paths, has_password=bool(password)
        )
        logger.info("SIMULATE: 7z %s", " ".join(args))
        self._patch(sevenzip_exit_code=0, sevenzip_attempts=0)
        if self.effective.requires_archive_test:
            self._patch(archive_test_result="Simulated")
        if self.effective.pin_on_creation:
            self._pin(names)

    def process(
        self, source_paths: list[str], password: Optional[str] = None
    ) -> LocalArchiveResult:
        """Create, describe, test and pin the archive.

        Args:
            source_paths: Resolved sources (snapshot or shadow paths if any)
            password: Archive password, or None

        Returns:
            LocalArchiveResult with the aggregate status; the archive path is
            the first volume for split archives
        """
        effective = self.effective
        self._result = LocalArchiveResult(JobStatus.SUCCESS)

        self._check_free_space()
        if self._failed:
            return self._result

        names = archive_names(effective, self._now())
        self._result.archive_path = names.archive_path
        self._result.archive_filename = names.archive_filename
        self._patch(archive_path=str(names.archive_path), archive_filename=names.archive_filename)
        logger.info("Archive: %s", names.archive_path)

        if effective.simulate:
            if effective.is_split:
                self._remove_stale_volumes(names)
            self._simulate(names, source_paths, password)
            return self._result

        lock_path = instance_lock_path(effective.destination_dir, effective.job_name)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(lock_path):
            self._stages(names, source_paths, password)
        return self._result

    def _stages(self, names: ArchiveNames, source_paths: list[str], password) -> None:
        effective = self.effective
        if effective.is_split:
            self._remove_stale_volumes(names)

        self._run_archiver(names, source_paths, password)
        if self._failed:
            return

        if effective.generate_contents_manifest:
            self._write_contents_manifest(names, password)
        checksum_file = self._write_checksums(names)

        if effective.requires_archive_test:
            passed = self._test_archive(names, password)
            if passed and effective.verify_archive_checksum_on_test:
                self._verify_checksums(checksum_file)

        if effective.pin_on_creation and not self._failed:
            self._pin(names)
