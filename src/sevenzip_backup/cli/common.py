"""Shared CLI utilities and argument parsers."""

import argparse
import sys

from ..config import RunMode


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output and never prompt",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def get_run_mode(args: argparse.Namespace, stdin=None, stdout=None) -> RunMode:
    """Quiet when asked, interactive only when attached to a terminal."""
    if getattr(args, "quiet", False):
        return RunMode.QUIET
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    if stdin.isatty() and stdout.isatty():
        return RunMode.INTERACTIVE
    return RunMode.NON_INTERACTIVE
