"""Keep only the newest local backup instances of a job."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..config.schema import EffectiveJobConfig
from . import staging

logger = logging.getLogger(__name__)


@dataclass
class BackupInstance:
    base: Path
    primary: list[Path] = field(default_factory=list)

    @property
    def mtime(self) -> float:
        return max(p.stat().st_mtime for p in self.primary)

    @property
    def pinned(self) -> bool:
        return staging.pin_path(self.base).exists()

    def files(self) -> list[Path]:
        """Primary files and every sidecar named after the instance."""
        prefix = self.base.name + "."
        return sorted(
            p
            for p in self.base.parent.iterdir()
            if p.is_file() and (p.name == self.base.name or p.name.startswith(prefix))
        )


def find_instances(effective: EffectiveJobConfig) -> list[BackupInstance]:
    """Backup instances of the job in its destination, newest first."""
    destination = Path(effective.destination_dir)
    if not destination.is_dir():
        return []
    prefix = f"{effective.base_filename} ["
    extensions = {effective.archive_extension, effective.internal_archive_extension}

    instances: dict[Path, BackupInstance] = {}
    for path in destination.iterdir():
        if not path.is_file() or not path.name.startswith(prefix):
            continue
        if staging.is_volume(path):
            base = staging.instance_base(path)
        elif any(path.name.endswith(ext) for ext in extensions):
            base = path
        else:
            continue
        instances.setdefault(base, BackupInstance(base)).primary.append(path)
    return sorted(instances.values(), key=lambda i: i.mtime, reverse=True)


def apply_retention(effective: EffectiveJobConfig) -> list[str]:
    """Delete instances beyond ``LocalRetentionCount``; pinned ones are kept.

    Returns:
        Paths of the deleted files
    """
    keep = effective.local_retention_count
    if keep <= 0:
        logger.debug("Local retention disabled for %s", effective.job_name)
        return []

    unpinned = []
    for instance in find_instances(effective):
        if instance.pinned:
            logger.debug("Keeping pinned backup %s", instance.base.name)
        else:
            unpinned.append(instance)

    deleted = []
    for instance in unpinned[keep:]:
        for path in instance.files():
            if effective.simulate:
                logger.info("SIMULATE: would delete old backup file %s", path)
                continue
            try:
                path.unlink()
                deleted.append(str(path))
            except OSError as e:
                logger.warning("Could not delete old backup file %s: %s", path, e)
        logger.info("Retention removed backup %s", instance.base.name)
    return deleted
