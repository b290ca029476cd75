"""Config command: Configuration management."""

import argparse
import logging

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError, find_config_file, load_config
from ..config.loader import generate_example_config, search_paths
from ..config.resolver import resolve_effective_config
from .common import get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    else:
        print("Usage: sevenzip-backup config <validate|init>")
        return 1


def _validate_config(args: argparse.Namespace) -> int:
    """Validate the configuration files and resolve every enabled job."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            for path in search_paths():
                print(f"  {path}")
            return 1

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path, getattr(args, "user_config", None))
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    errors = []
    enabled = 0
    for name, job in config.backup_locations.items():
        if not __util__.is_flag_true(job.get("Enabled", True)):
            continue
        enabled += 1
        try:
            resolve_effective_config(name, config)
        except ConfigError as e:
            errors.append(str(e))

    if warnings:
        print("")
        print("Warnings:")
        for warning in warnings:
            print(f"  - {warning}")

    if errors:
        print("")
        print("Errors:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("")
    print("Configuration is valid.")
    print(f"  Files: {', '.join(str(p) for p in config.sources)}")
    print(f"  Jobs: {len(config.backup_locations)} ({enabled} enabled)")
    print(f"  Sets: {len(config.backup_sets)}")
    print(f"  Targets: {len(config.backup_targets)}")
    return 0


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w", encoding="utf-8") as f:
                f.write(content)
            print(f"Example configuration written to: {output}")
        except OSError as e:
            print(f"Error writing file: {e}")
            return 1
    else:
        print(content)

    return 0
