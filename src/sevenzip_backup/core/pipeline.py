# pyright: standard

"""sevenzip-backup: sevenzip_backup/core/pipeline.py
Run one job from pre-processing to remote transfer.
"""

import logging
from typing import Callable, Optional

from .. import __util__
from ..config.schema import Config, EffectiveJobConfig, RunMode
from ..sevenzip import SevenZipRunner
from .archive import LocalArchiveProcessor
from .hooks import run_post_hooks
from .paths import PathDisposition
from .preprocess import JobPreProcessor
from .report import JobReportData, JobStatus
from .retention import apply_retention
from .source import CleanupHandles
from .transfer import TransferResult, transfer_to_targets

logger = logging.getLogger(__name__)


def _archive_and_transfer(
    effective: EffectiveJobConfig,
    report: JobReportData,
    source_paths: list[str],
    password: Optional[str],
    runner: Optional[SevenZipRunner],
    transfer: Callable[..., TransferResult],
) -> None:
    local = LocalArchiveProcessor(effective, runner).process(source_paths, password)
    report.apply(local.report_patch)
    report.messages.extend(local.messages)
    report.status = report.status.worst(local.status)
    if local.status is JobStatus.FAILURE:
        report.error_message = report.error_message or local.error_message
        if effective.resolved_targets:
            report.transfer_status = "Skipped (local archive failed)"
        return

    report.retention_deleted = apply_retention(effective)

    if local.archive_path is None or not effective.resolved_targets:
        return
    transferred = transfer(effective, local.archive_path)
    report.apply(transferred.report_patch)
    if not transferred.success:
        report.downgrade(JobStatus.WARNINGS, transferred.error_message)


def run_job(
    effective: EffectiveJobConfig,
    config: Config,
    report: Optional[JobReportData] = None,
    run_mode: RunMode = RunMode.NON_INTERACTIVE,
    preprocessor: Optional[JobPreProcessor] = None,
    runner: Optional[SevenZipRunner] = None,
    transfer: Callable[..., TransferResult] = transfer_to_targets,
) -> JobReportData:
    """Run a single job and return its report.

    Snapshot and shadow copy handles are released on every path out of
    this function. Job scoped errors are recorded in the report rather
    than raised.
    """
    report = report or JobReportData(effective.job_name)
    preprocessor = preprocessor or JobPreProcessor(config, run_mode)
    handles = CleanupHandles()
    logger.info(__util__.log_heading(f"Job {effective.job_name}"))
    if effective.simulate:
        logger.info("Simulation mode: no archives are written or transferred")

    try:
        pre = preprocessor.run(effective, handles)
        report.apply(pre.report_patch)

        if pre.disposition is PathDisposition.SKIP_JOB:
            report.status = JobStatus.SKIPPED
            report.messages.extend(pre.messages)
        elif pre.disposition is PathDisposition.FAIL_JOB:
            report.downgrade(JobStatus.FAILURE, "; ".join(pre.messages) or "Path validation failed")
        else:
            for message in pre.messages:
                report.downgrade(JobStatus.WARNINGS, message)
            _archive_and_transfer(
                effective, report, pre.source_paths, pre.password, runner, transfer
            )
    except __util__.AbortError as e:
        report.apply(e.report_patch)
        logger.error("Job '%s' aborted: %s", effective.job_name, e)
        report.downgrade(JobStatus.FAILURE, str(e))
    except Exception as e:  # pylint: disable=broad-except
        logger.exception("Unexpected error in job '%s'", effective.job_name)
        report.downgrade(JobStatus.FAILURE, f"Unexpected error: {e}")
    finally:
        for error in handles.release():
            report.downgrade(JobStatus.WARNINGS, error)

    if report.status is not JobStatus.SKIPPED:
        for problem in run_post_hooks(effective, report.status.value, report.archive_path):
            report.messages.append(problem)

    report.finish()
    logger.info(
        "Job '%s' finished with status %s in %.1fs",
        effective.job_name,
        report.status.value,
        report.duration,
    )
    return report

