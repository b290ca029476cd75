"""Run command: execute the selected backup jobs."""

import argparse
import logging
from pathlib import Path
from typing import Callable, Optional

from rich.table import Table

from .. import __logger__, __util__
from ..__logger__ import create_logger
from ..config import (
    CliOverrides,
    Config,
    ConfigError,
    PostRunActionSettings,
    RunMode,
    deep_merge,
    find_config_file,
    load_config,
)
from ..config.jobs import JobSelection, resolve_jobs
from ..config.resolver import resolve_effective_config
from ..core.pipeline import run_job
from ..core.postrun import perform_post_run_action
from ..core.report import JobReportData, JobStatus
from .common import get_log_level, get_run_mode

logger = logging.getLogger(__name__)

EXIT_CODES = {
    JobStatus.SUCCESS: 0,
    JobStatus.SKIPPED: 0,
    JobStatus.WARNINGS: 1,
    JobStatus.FAILURE: 2,
}


def build_overrides(args: argparse.Namespace) -> CliOverrides:
    """Map parsed run arguments onto the CLI configuration tier."""
    return CliOverrides(
        job_name=getattr(args, "job", None),
        set_name=getattr(args, "set_name", None),
        skip_jobs=list(getattr(args, "skip_job", None) or []),
        simulate=getattr(args, "simulate", False),
        use_vss=getattr(args, "use_vss", False),
        skip_vss=getattr(args, "skip_vss", False),
        enable_retries=getattr(args, "enable_retries", False),
        skip_retries=getattr(args, "skip_retries", False),
        treat_warnings_as_success=getattr(args, "treat_warnings_as_success", False),
        test_archive=getattr(args, "test_archive", False),
        verify_before_transfer=getattr(args, "verify_before_transfer", False),
        pin=getattr(args, "pin", False),
        priority=getattr(args, "priority", None),
        cpu_affinity=getattr(args, "cpu_affinity", None),
        include_list_file=getattr(args, "include_list", None),
        exclude_list_file=getattr(args, "exclude_list", None),
        log_retention_count=getattr(args, "log_retention_count", None),
        notification_profile=getattr(args, "notification_profile", None),
        post_run_action=getattr(args, "post_run_action", None),
        post_run_delay_seconds=getattr(args, "post_run_delay", None),
        post_run_force=getattr(args, "post_run_force", False),
    )


def overall_status(reports: list[JobReportData]) -> JobStatus:
    status = JobStatus.SUCCESS
    for report in reports:
        status = status.worst(report.status)
    return status


def exit_code_for(status: JobStatus) -> int:
    return EXIT_CODES[status]


def _log_directory(config: Config) -> Optional[Path]:
    if not __util__.is_flag_true(config.get("EnableFileLogging", False)):
        return None
    log_dir = Path(str(config.get("LogDirectory", "Logs")))
    if not log_dir.is_absolute() and config.sources:
        log_dir = config.sources[0].parent / log_dir
    return log_dir


def run_selection(
    config: Config,
    selection: JobSelection,
    cli: CliOverrides,
    run_mode: RunMode = RunMode.NON_INTERACTIVE,
    job_runner: Callable[..., JobReportData] = run_job,
) -> tuple[list[JobReportData], Optional[PostRunActionSettings]]:
    """Run the selected jobs in order.

    Returns:
        The job reports, and the post-run action of the last job that
        resolved its configuration
    """
    reports: list[JobReportData] = []
    last_action: Optional[PostRunActionSettings] = None
    log_dir = _log_directory(config)

    for index, job_name in enumerate(selection.jobs):
        report = JobReportData(job_name)
        try:
            effective, patch = resolve_effective_config(
                job_name, config, cli, selection.set_name
            )
        except ConfigError as e:
            logger.error("Configuration error in job '%s': %s", job_name, e)
            report.downgrade(JobStatus.FAILURE, str(e))
            report.finish()
        else:
            report.apply(patch)
            last_action = effective.post_run_action
            if log_dir is not None:
                with __logger__.job_log_file(log_dir, job_name) as log_path:
                    logger.debug("Logging job '%s' to %s", job_name, log_path)
                    report = job_runner(effective, config, report, run_mode)
                __logger__.prune_job_logs(log_dir, job_name, effective.log_retention_count)
            else:
                report = job_runner(effective, config, report, run_mode)
        reports.append(report)

        remaining = selection.jobs[index + 1 :]
        if report.status is JobStatus.FAILURE and remaining:
            if selection.stop_set_on_error:
                logger.error(
                    "Job '%s' failed; stopping %s (remaining: %s)",
                    job_name,
                    selection.set_name or "run",
                    ", ".join(remaining),
                )
                break
            logger.warning("Job '%s' failed; continuing with the next job", job_name)

    return reports, last_action


def choose_post_run_action(
    config: Config,
    selection: JobSelection,
    cli: CliOverrides,
    last_job_action: Optional[PostRunActionSettings],
) -> Optional[PostRunActionSettings]:
    """The set's action wins over the last job's unless the CLI names one."""
    if cli.post_run_action or not selection.set_post_run_action:
        return last_job_action
    table = deep_merge(config.post_run_action_defaults, selection.set_post_run_action)
    return PostRunActionSettings.from_table(table)


def print_summary(reports: list[JobReportData]) -> None:
    table = Table(title="Backup summary")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Archive")
    table.add_column("Transfer")
    table.add_column("Duration", justify="right")
    colours = {"SUCCESS": "green", "WARNINGS": "yellow", "FAILURE": "red", "SKIPPED": "dim"}
    for report in reports:
        status = report.status.value
        table.add_row(
            report.job_name,
            f"[{colours[status]}]{status}[/]",
            report.archive_filename or "-",
            report.transfer_status,
            f"{report.duration:.1f}s",
        )
    __logger__.cons.print(table)
    for report in reports:
        if report.error_message:
            logger.error("%s: %s", report.job_name, report.error_message)


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code: 0 all jobs succeeded, 1 some had warnings, 2 any failed
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Create one with: sevenzip-backup config init -o Default.toml")
            return 2

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path, getattr(args, "user_config", None))
        for warning in warnings:
            logger.warning("Config: %s", warning)

        cli = build_overrides(args)
        run_mode = get_run_mode(args)
        selection = resolve_jobs(config, cli, run_mode, console=__logger__.cons)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    if cli.simulate:
        logger.info("Simulation mode enabled")
    logger.info("Jobs to run: %s", ", ".join(selection.jobs))

    reports, last_action = run_selection(config, selection, cli, run_mode)
    print_summary(reports)
    status = overall_status(reports)

    action = choose_post_run_action(config, selection, cli, last_action)
    try:
        perform_post_run_action(action, status.value, simulate=cli.simulate)
    except (ValueError, __util__.AbortError) as e:
        logger.error("Post-run action failed: %s", e)

    return exit_code_for(status)
