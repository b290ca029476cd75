"""Source resolution: snapshot provider, VSS shadow copies, or plain paths.

The resolver decides how the archiver gets a stable view of the sources
and rewrites the source paths accordingly. Whatever it acquires is recorded
in a :class:`CleanupHandles` owned by the caller, which must release it on
every exit path.
"""

import logging
from dataclasses import dataclass, field
from pathlib import PureWindowsPath
from typing import Any, Callable, Optional

from .. import __util__
from ..config.schema import Config, EffectiveJobConfig
from ..snapshot import SnapshotProvider, SnapshotSession, VssManager, choose_snapshot_provider

logger = logging.getLogger(__name__)


@dataclass
class CleanupHandles:
    """Snapshot and shadow copy resources held for one job run."""

    vss_paths_in_use: dict[str, str] = field(default_factory=dict)
    vss_manager: Optional[VssManager] = None
    snapshot_session: Optional[SnapshotSession] = None
    snapshot_provider: Optional[SnapshotProvider] = None

    def release(self) -> list[str]:
        """Remove shadow copies and dismount snapshots.

        Safe to call more than once. Never raises; problems are logged and
        returned so callers on an error path do not lose the original error.
        """
        errors = []
        if self.vss_manager is not None:
            try:
                self.vss_manager.remove_shadow_copies()
            except Exception as e:
                errors.append(f"Shadow copy removal failed: {e}")
            self.vss_manager = None
            self.vss_paths_in_use = {}

        if self.snapshot_session is not None and self.snapshot_provider is not None:
            try:
                self.snapshot_provider.dismount(self.snapshot_session)
            except Exception as e:
                errors.append(f"Snapshot dismount failed: {e}")
            self.snapshot_session = None
            self.snapshot_provider = None

        for error in errors:
            logger.error(error)
        return errors


@dataclass
class SourceResolution:
    source_paths: list[str]
    report_patch: dict[str, Any] = field(default_factory=dict)


def _translate_to_mounts(resource: str, sub_paths: list[str], mounts: list[str]) -> list[str]:
    """Swap the drive of each in-guest path for the matching mounted drive.

    Distinct guest drives are paired with the mounted volumes in order.
    """
    drives = []
    for path in sub_paths:
        drive = PureWindowsPath(path).drive.upper()
        if drive not in drives:
            drives.append(drive)
    if len(drives) > len(mounts):
        raise __util__.SourceResolutionError(
            f"Snapshot of '{resource}' exposes {len(mounts)} volume(s) but the job "
            f"references {len(drives)} drive(s): {', '.join(drives)}"
        )

    drive_map = {drive: mounts[i] for i, drive in enumerate(drives)}
    translated = []
    for path in sub_paths:
        win_path = PureWindowsPath(path)
        mount = PureWindowsPath(drive_map[win_path.drive.upper()])
        translated.append(str(mount / win_path.relative_to(win_path.anchor)))
    return translated


def _snapshot_sources(
    effective: EffectiveJobConfig,
    config: Config,
    source_paths: list[str],
    handles: CleanupHandles,
    provider_factory: Callable[[dict[str, Any]], SnapshotProvider],
) -> SourceResolution:
    name = effective.snapshot_provider_name or ""
    if not effective.source_is_vm_name:
        raise __util__.SourceResolutionError(
            f"Snapshot provider '{name}' requires SourceIsVMName = true"
        )
    provider_config = config.snapshot_providers.get(name)
    if provider_config is None:
        raise __util__.SourceResolutionError(
            f"Snapshot provider '{name}' is not defined in SnapshotProviders"
        )
    try:
        provider = provider_factory(provider_config)
    except ValueError as e:
        raise __util__.SourceResolutionError(str(e)) from e

    resource, sub_paths = source_paths[0], source_paths[1:]
    if effective.simulate:
        logger.info("SIMULATE: would snapshot '%s' with %r", resource, provider)
        return SourceResolution(
            list(source_paths),
            {"snapshot_status": "Simulated", "effective_source_paths": list(source_paths)},
        )

    session = provider.create_snapshot(resource)
    if not session.success:
        raise __util__.SourceResolutionError(
            f"Snapshot of '{resource}' failed: {session.error_message}",
            report_patch={"snapshot_status": "Failed"},
        )
    handles.snapshot_provider = provider
    handles.snapshot_session = session

    mounts = provider.get_mount_paths(session)
    if not mounts:
        raise __util__.SourceResolutionError(
            f"Snapshot of '{resource}' succeeded but returned no mount paths",
            report_patch={
                "snapshot_status": "Failed",
                "snapshot_session_id": session.session_id,
            },
        )

    sources = _translate_to_mounts(resource, sub_paths, mounts) if sub_paths else mounts
    logger.info("Using snapshot paths: %s", ", ".join(sources))
    return SourceResolution(
        sources,
        {
            "snapshot_status": "Used",
            "snapshot_session_id": session.session_id,
            "effective_source_paths": list(sources),
        },
    )


def _vss_sources(
    effective: EffectiveJobConfig,
    source_paths: list[str],
    handles: CleanupHandles,
    vss_factory: Callable[[], VssManager],
    is_admin: Callable[[], bool],
) -> SourceResolution:
    if not is_admin():
        raise __util__.SourceResolutionError(
            "VSS requires administrator privileges",
            report_patch={"vss_status": "Failed (not administrator)"},
        )

    manager = vss_factory()
    handles.vss_manager = manager
    try:
        mapping = manager.create_shadow_copies(
            source_paths,
            effective.vss_context_option,
            effective.vss_metadata_cache_path,
            effective.vss_polling_timeout_seconds,
            effective.vss_polling_interval_seconds,
        )
    except __util__.SnapshotTimeoutError as e:
        e.report_patch.setdefault("vss_status", "Failed (timeout)")
        raise
    if not mapping:
        raise __util__.SourceResolutionError(
            "VSS was requested but no shadow copies were created",
            report_patch={"vss_status": "Failed"},
        )

    handles.vss_paths_in_use = dict(mapping)
    sources = [mapping.get(path, path) for path in source_paths]
    for path in source_paths:
        if path not in mapping:
            logger.warning("No shadow copy for %s; using the live path", path)
    return SourceResolution(
        sources,
        {
            "vss_status": "Used",
            "vss_shadow_paths": dict(mapping),
            "effective_source_paths": list(sources),
        },
    )


def resolve_sources(
    effective: EffectiveJobConfig,
    config: Config,
    source_paths: list[str],
    handles: CleanupHandles,
    *,
    vss_factory: Callable[[], VssManager] = VssManager,
    provider_factory: Callable[[dict[str, Any]], SnapshotProvider] = choose_snapshot_provider,
    is_admin: Callable[[], bool] = __util__.is_admin,
) -> SourceResolution:
    """Decide between snapshot, VSS and plain sources and rewrite the paths.

    Args:
        effective: Effective job configuration
        config: Loaded configuration (for the SnapshotProviders registry)
        source_paths: Validated source paths
        handles: Caller owned cleanup handles; filled in as resources are acquired

    Returns:
        SourceResolution with the paths to hand to the archiver

    Raises:
        SourceResolutionError: Misconfiguration, provider failure or no shadows
        SnapshotTimeoutError: Snapshot or shadow copy creation timed out
    """
    if effective.snapshot_provider_name:
        logger.info(
            "Using snapshot provider '%s' for '%s'",
            effective.snapshot_provider_name,
            effective.job_name,
        )
        return _snapshot_sources(
            effective, config, source_paths, handles, provider_factory
        )

    if effective.enable_vss:
        if effective.simulate:
            logger.info("SIMULATE: would create shadow copies for %s", source_paths)
            return SourceResolution(
                list(source_paths),
                {"vss_status": "Simulated", "effective_source_paths": list(source_paths)},
            )
        return _vss_sources(effective, source_paths, handles, vss_factory, is_admin)

    return SourceResolution(
        list(source_paths), {"effective_source_paths": list(source_paths)}
    )
