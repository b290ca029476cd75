"""Everything that has to happen before 7-Zip runs.

:class:`JobPreProcessor` validates paths, obtains the archive password,
runs the pre-backup hook and resolves the sources. Snapshot and shadow
copy handles go into the caller's :class:`CleanupHandles`; if a later step
raises, whatever was already acquired is released before the error
propagates.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config.schema import Config, EffectiveJobConfig, RunMode
from .credentials import get_archive_password
from .hooks import run_hook
from .paths import PathDisposition, validate_paths
from .source import CleanupHandles, SourceResolution, resolve_sources

logger = logging.getLogger(__name__)


@dataclass
class PreProcessResult:
    disposition: PathDisposition
    source_paths: list[str] = field(default_factory=list)
    password: Optional[str] = field(default=None, repr=False)
    handles: CleanupHandles = field(default_factory=CleanupHandles)
    report_patch: dict[str, Any] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)


class JobPreProcessor:
    """Sequence path validation, credentials, pre-backup hook and sources."""

    def __init__(
        self,
        config: Config,
        run_mode: RunMode = RunMode.NON_INTERACTIVE,
        password_source: Callable[..., Optional[str]] = get_archive_password,
        source_resolver: Callable[..., SourceResolution] = resolve_sources,
    ) -> None:
        self.config = config
        self.run_mode = run_mode
        self._password_source = password_source
        self._source_resolver = source_resolver

    def run(
        self, effective: EffectiveJobConfig, handles: Optional[CleanupHandles] = None
    ) -> PreProcessResult:
        """Prepare one job run.

        Returns:
            PreProcessResult; a disposition other than PROCEED means the
            job must not archive

        Raises:
            CredentialError: No password could be obtained
            HookError: The pre-backup script failed
            SourceResolutionError: Snapshot or shadow copies are unusable
        """
        handles = handles if handles is not None else CleanupHandles()
        validation = validate_paths(effective)
        result = PreProcessResult(
            validation.disposition,
            validation.source_paths,
            handles=handles,
            report_patch={"source_paths": list(validation.source_paths)},
            messages=list(validation.messages),
        )
        if validation.disposition is not PathDisposition.PROCEED:
            return result

        result.password = self._password_source(effective, self.run_mode)
        if result.password:
            logger.debug("Archive password obtained via %s", effective.archive_password_method)

        run_hook(effective.pre_backup_script_path, effective, kind="pre-backup")

        try:
            resolution = self._source_resolver(
                effective, self.config, validation.source_paths, handles
            )
        except Exception:
            errors = handles.release()
            if errors:
                logger.warning("Cleanup after failed source resolution: %s", "; ".join(errors))
            raise

        result.source_paths = resolution.source_paths
        result.report_patch.update(resolution.report_patch)
        return result
