"""sevenzip-backup: sevenzip_backup/__init__.py."""

from pathlib import Path

from .__util__ import safe_filename


__version__ = "0.3.0"


def instance_lock_path(destination_dir: Path | str, job_name: str) -> Path:
    """Return the lock file used to serialise runs of one job in a destination."""
    return Path(destination_dir) / f".{safe_filename(job_name)}.sevenzip-backup.lock"
