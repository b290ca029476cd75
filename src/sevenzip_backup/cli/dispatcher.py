"""CLI dispatcher: argument parsing and routing to subcommands."""

import argparse
import sys
from typing import Callable

from .common import add_verbosity_args

PRIORITIES = ["Idle", "BelowNormal", "Normal", "AboveNormal", "High"]
POST_RUN_ACTIONS = ["None", "Shutdown", "Restart", "Hibernate", "LogOff", "Sleep", "Lock"]


def _add_run_args(run_parser: argparse.ArgumentParser) -> None:
    selection = run_parser.add_argument_group("Job selection")
    target = selection.add_mutually_exclusive_group()
    target.add_argument("--job", metavar="NAME", help="Run a single job")
    target.add_argument("--set", metavar="NAME", dest="set_name", help="Run a backup set")
    selection.add_argument(
        "--skip-job",
        metavar="NAME",
        action="append",
        default=[],
        help="Do not run this job (repeatable)",
    )

    run_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Show what would be done without making changes",
    )

    switches = run_parser.add_argument_group("Overrides")
    vss = switches.add_mutually_exclusive_group()
    vss.add_argument("--use-vss", action="store_true", help="Force Volume Shadow Copy on")
    vss.add_argument("--skip-vss", action="store_true", help="Force Volume Shadow Copy off")
    retries = switches.add_mutually_exclusive_group()
    retries.add_argument("--enable-retries", action="store_true", help="Force 7-Zip retries on")
    retries.add_argument("--skip-retries", action="store_true", help="Force 7-Zip retries off")
    switches.add_argument(
        "--treat-warnings-as-success",
        action="store_true",
        help="Treat 7-Zip exit code 1 as success",
    )
    switches.add_argument(
        "--test-archive", action="store_true", help="Test archive integrity after creation"
    )
    switches.add_argument(
        "--verify-before-transfer",
        action="store_true",
        help="Block remote transfer unless the local archive verifies",
    )
    switches.add_argument("--pin", action="store_true", help="Pin the new archive")
    switches.add_argument("--priority", choices=PRIORITIES, help="7-Zip process priority")
    switches.add_argument(
        "--cpu-affinity", metavar="CPUS", help="7-Zip CPU affinity ('0,1' or '0x3')"
    )
    switches.add_argument("--include-list", metavar="FILE", help="7-Zip include list file")
    switches.add_argument("--exclude-list", metavar="FILE", help="7-Zip exclude list file")
    switches.add_argument(
        "--log-retention-count",
        type=int,
        metavar="N",
        help="Log files to keep per job (0 keeps all)",
    )
    switches.add_argument(
        "--notification-profile",
        metavar="NAME",
        help="Notification profile; enables notifications",
    )
    switches.add_argument(
        "--post-run-action", choices=POST_RUN_ACTIONS, help="System action after the run"
    )
    switches.add_argument(
        "--post-run-delay", type=int, metavar="SECONDS", help="Delay before the post-run action"
    )
    switches.add_argument(
        "--post-run-force", action="store_true", help="Force the post-run action"
    )


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="sevenzip-backup",
        description="7-Zip backup jobs with shadow copies, verification and remote targets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to the defaults configuration file (Default.toml)",
    )
    parser.add_argument(
        "--user-config",
        metavar="FILE",
        help="Path to the user override file (default: User.toml next to the defaults)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Run backup jobs",
        description="Archive, verify and transfer the selected jobs",
    )
    _add_run_args(run_parser)

    subparsers.add_parser(
        "list",
        help="Show configured jobs, sets and targets",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_sub = config_parser.add_subparsers(dest="config_action")
    config_sub.add_parser("validate", help="Validate the configuration files")
    init_parser = config_sub.add_parser("init", help="Generate an example Default.toml")
    init_parser.add_argument(
        "-o", "--output", metavar="FILE", help="Write to FILE instead of stdout"
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"sevenzip-backup {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return 1

    handlers: dict[str, Callable] = {
        "run": cmd_run,
        "list": cmd_list,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Execute run command."""
    from .run import execute_run

    return execute_run(args)


def cmd_list(args: argparse.Namespace) -> int:
    """Execute list command."""
    from .list_cmd import execute_list

    return execute_list(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the sevenzip-backup CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)
