"""Command line interface for sevenzip-backup."""

from .dispatcher import main

__all__ = ["main"]
