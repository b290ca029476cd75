"""List command: show configured jobs, sets and remote targets."""

import argparse
import logging

from rich.table import Table

from .. import __logger__, __util__
from ..__logger__ import create_logger
from ..config import Config, ConfigError, find_config_file, load_config
from .common import get_log_level

logger = logging.getLogger(__name__)


def _paths(value) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value or "-")


def jobs_table(config: Config) -> Table:
    table = Table(title="Backup jobs")
    table.add_column("Job")
    table.add_column("Enabled")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Targets")
    default_dest = config.get("DefaultDestinationDir", "-")
    for name, job in config.backup_locations.items():
        enabled = __util__.is_flag_true(job.get("Enabled", True))
        table.add_row(
            name,
            "yes" if enabled else "[dim]no[/]",
            _paths(job.get("Path")),
            str(job.get("DestinationDir", default_dest)),
            _paths(job.get("TargetNames", [])) or "-",
        )
    return table


def sets_table(config: Config) -> Table:
    table = Table(title="Backup sets")
    table.add_column("Set")
    table.add_column("Jobs")
    table.add_column("On error")
    for name, backup_set in config.backup_sets.items():
        table.add_row(
            name,
            _paths(backup_set.get("JobNames", [])),
            str(backup_set.get("OnErrorInJob", "StopSet")),
        )
    return table


def targets_table(config: Config) -> Table:
    table = Table(title="Remote targets")
    table.add_column("Target")
    table.add_column("Type")
    for name, target in config.backup_targets.items():
        table.add_row(name, str(target.get("Type", "?")))
    return table


def execute_list(args: argparse.Namespace) -> int:
    """Execute the list command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            return 1
        config, _ = load_config(config_path, getattr(args, "user_config", None))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    console = __logger__.cons
    console.print(jobs_table(config))
    if config.backup_sets:
        console.print(sets_table(config))
    if config.backup_targets:
        console.print(targets_table(config))
    return 0
