"""7-Zip command line integration."""

from .args import build_archive_args
from .runner import ArchiveEntry, ExecutionResult, SevenZipRunner

__all__ = ["ArchiveEntry", "ExecutionResult", "SevenZipRunner", "build_archive_args"]
