# pyright: standard

"""sevenzip-backup: sevenzip_backup/__logger__.py
A common rich logger plus per-job log files.
"""

import contextlib
import logging
import time
from pathlib import Path
from typing import Iterator

from rich.console import Console
from rich.logging import RichHandler

from .__util__ import safe_filename

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)

FILE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_logger(level: str | int = "INFO", console: Console | None = None) -> None:
    """Helper function to setup console logging at the requested level."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = console or Console(stderr=True)
    rich_handler = RichHandler(console=cons, show_path=False)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=[rich_handler],
        force=True,
    )


@contextlib.contextmanager
def job_log_file(log_dir: Path | str, job_name: str) -> Iterator[Path]:
    """Attach a file handler to the root logger for the duration of one job."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = time.strftime("%Y%m%d-%H%M%S")
    path = log_dir / f"{safe_filename(job_name)}_{stamp}.log"

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        yield path
    finally:
        root.removeHandler(handler)
        handler.close()


def prune_job_logs(log_dir: Path | str, job_name: str, keep: int) -> list[Path]:
    """Delete all but the ``keep`` newest log files of a job.

    A ``keep`` of zero or less keeps everything. Returns the deleted paths.
    """
    if keep <= 0:
        return []
    log_dir = Path(log_dir)
    if not log_dir.is_dir():
        return []

    logs = sorted(
        log_dir.glob(f"{safe_filename(job_name)}_*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = []
    for old in logs[keep:]:
        try:
            old.unlink()
            deleted.append(old)
        except OSError as e:
            logging.getLogger(__name__).warning(
                "Could not delete old log file %s: %s", old, e
            )
    return deleted

