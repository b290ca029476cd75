"""Source and destination path validation."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..config.schema import EffectiveJobConfig

logger = logging.getLogger(__name__)


class PathDisposition(Enum):
    """What the pipeline should do after path validation."""

    PROCEED = "Proceed"
    SKIP_JOB = "SkipJob"
    FAIL_JOB = "FailJob"


@dataclass
class PathValidation:
    disposition: PathDisposition
    source_paths: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)


def _fail(message: str, sources=None) -> PathValidation:
    logger.error(message)
    return PathValidation(PathDisposition.FAIL_JOB, list(sources or []), [message])


def validate_paths(effective: EffectiveJobConfig) -> PathValidation:
    """Check that sources exist and the destination can be written to.

    Missing sources are handled according to ``OnSourcePathNotFound``.
    Sources that name a virtual machine are not checked on the local disk.
    """
    messages: list[str] = []
    sources = list(effective.source_paths)

    if not effective.source_is_vm_name:
        missing = [p for p in sources if not Path(p).exists()]
        if missing:
            action = effective.on_source_path_not_found
            message = f"Source path(s) not found: {', '.join(missing)}"
            if action == "SkipJob":
                logger.warning("%s; skipping job '%s'", message, effective.job_name)
                return PathValidation(PathDisposition.SKIP_JOB, sources, [message])
            if action == "WarnAndContinue":
                sources = [p for p in sources if p not in missing]
                if not sources:
                    return _fail(f"{message}; no source paths left to back up")
                logger.warning("%s; continuing with the remaining paths", message)
                messages.append(message)
            else:
                return _fail(message, sources)

    destination = Path(effective.destination_dir)
    if not destination.is_dir():
        if effective.simulate:
            logger.info("SIMULATE: would create destination directory %s", destination)
        else:
            logger.info("Creating destination directory: %s", destination)
            try:
                destination.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                return _fail(f"Cannot create destination {destination}: {e}", sources)

    if destination.is_dir() and not os.access(destination, os.W_OK):
        return _fail(f"Destination {destination} is not writable", sources)

    return PathValidation(PathDisposition.PROCEED, sources, messages)
