"""Job selection: turn CLI intent into the ordered list of jobs to run."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .. import __util__
from .loader import ConfigError
from .schema import CliOverrides, Config, RunMode

logger = logging.getLogger(__name__)

INTERACTIVE_SELECTION_NAME = "(Interactive Selection)"

PromptFunc = Callable[[str], Optional[str]]


class JobSelectionError(ConfigError):
    """No runnable job could be selected."""


@dataclass
class JobSelection:
    """Result of job resolution.

    Attributes:
        jobs: Ordered, de-duplicated job names to run
        set_name: Name of the set being run (or the interactive tag), if any
        stop_set_on_error: Whether a failed job aborts the remaining jobs
        set_post_run_action: Set-level post-run action table, if any
    """

    jobs: list[str] = field(default_factory=list)
    set_name: Optional[str] = None
    stop_set_on_error: bool = True
    set_post_run_action: Optional[dict[str, Any]] = None


def _unique(names) -> list[str]:
    seen = set()
    ordered = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


def _stop_on_error(backup_set: dict[str, Any]) -> bool:
    policy = str(backup_set.get("OnErrorInJob", "StopSet"))
    return policy.lower() != "continueset"


def _from_set(config: Config, set_name: str) -> JobSelection:
    backup_set = config.backup_sets.get(set_name)
    if backup_set is None:
        available = ", ".join(config.set_names()) or "(none)"
        raise ConfigError(
            f"Backup set '{set_name}' not found. Available sets: {available}"
        )

    job_names = list(backup_set.get("JobNames", []) or [])
    stop = _stop_on_error(backup_set)
    logger.info(
        "Running backup set '%s' (%d job(s), on error: %s)",
        set_name,
        len(job_names),
        "StopSet" if stop else "ContinueSet",
    )
    return JobSelection(
        jobs=job_names,
        set_name=set_name,
        stop_set_on_error=stop,
        set_post_run_action=backup_set.get("PostRunAction"),
    )


def _from_job(config: Config, job_name: str) -> JobSelection:
    if job_name not in config.backup_locations:
        available = ", ".join(config.job_names()) or "(none)"
        raise ConfigError(f"Job '{job_name}' not found. Available jobs: {available}")
    return JobSelection(jobs=[job_name])


def _console_prompt(console: Console) -> PromptFunc:
    def ask(message: str) -> Optional[str]:
        try:
            return Prompt.ask(message, console=console, default="")
        except (EOFError, KeyboardInterrupt):
            return None

    return ask


def _parse_menu_choice(answer: str, count: int) -> list[int] | None:
    """Parse ``"1, 3"`` into zero based indexes, or None if invalid."""
    indexes = []
    for part in answer.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            return None
        number = int(part)
        if not 1 <= number <= count:
            return None
        indexes.append(number - 1)
    return _unique(indexes) or None


def _interactive(
    config: Config, prompt: PromptFunc | None, console: Console | None
) -> JobSelection:
    console = console or Console()
    entries = [("Job", name) for name in config.job_names()]
    entries += [("Set", name) for name in config.set_names()]

    table = Table(title="Available backup jobs and sets")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Name")
    for number, (kind, name) in enumerate(entries, 1):
        table.add_row(str(number), kind, name)
    console.print(table)

    ask = prompt or _console_prompt(console)
    while True:
        answer = ask("Select one or more numbers (comma separated), or 'q' to quit")
        if answer is None or not answer.strip() or answer.strip().lower() == "q":
            raise JobSelectionError("No job selected; quitting")
        indexes = _parse_menu_choice(answer, len(entries))
        if indexes is not None:
            break
        console.print(f"[red]Invalid selection:[/red] {answer!r}")

    chosen = [entries[i] for i in indexes]
    if len(chosen) == 1 and chosen[0][0] == "Set":
        return _from_set(config, chosen[0][1])

    jobs: list[str] = []
    for kind, name in chosen:
        if kind == "Set":
            jobs.extend(config.backup_sets[name].get("JobNames", []) or [])
        else:
            jobs.append(name)
    return JobSelection(jobs=jobs, set_name=INTERACTIVE_SELECTION_NAME)


def resolve_jobs(
    config: Config,
    cli: CliOverrides,
    run_mode: RunMode = RunMode.NON_INTERACTIVE,
    prompt: PromptFunc | None = None,
    console: Console | None = None,
) -> JobSelection:
    """Determine which jobs to run for this invocation.

    Args:
        config: Loaded configuration
        cli: Command line overrides (job, set and skip list)
        run_mode: Whether an interactive menu may be shown
        prompt: Input function used for the menu (defaults to a rich prompt)
        console: Console the menu is rendered on

    Returns:
        JobSelection with the filtered, de-duplicated job list

    Raises:
        ConfigError: Unknown set/job, nothing selectable, or nothing enabled
    """
    if cli.set_name:
        selection = _from_set(config, cli.set_name)
    elif cli.job_name:
        selection = _from_job(config, cli.job_name)
    else:
        job_names = config.job_names()
        if not job_names:
            raise JobSelectionError("No backup jobs are configured")
        if len(job_names) == 1 and not config.backup_sets:
            logger.info("Only one job configured, selecting '%s'", job_names[0])
            selection = JobSelection(jobs=[job_names[0]])
        elif run_mode is RunMode.INTERACTIVE:
            selection = _interactive(config, prompt, console)
        else:
            raise JobSelectionError(
                "No job or set specified and no interactive terminal available. "
                f"Available jobs: {', '.join(job_names)}; "
                f"available sets: {', '.join(config.set_names()) or '(none)'}"
            )

    candidates = _unique(selection.jobs)
    enabled = []
    for name in candidates:
        job = config.backup_locations.get(name)
        if job is None:
            logger.warning("Job '%s' is not defined in BackupLocations, skipping", name)
            continue
        if not __util__.is_flag_true(job.get("Enabled", True)):
            logger.info("Job '%s' is disabled, skipping", name)
            continue
        enabled.append(name)

    skip = set(cli.skip_jobs)
    jobs = []
    for name in enabled:
        if name in skip:
            logger.info("Job '%s' skipped by request", name)
            continue
        jobs.append(name)

    if not jobs:
        raise JobSelectionError("No valid enabled jobs to run")

    selection.jobs = jobs
    return selection
