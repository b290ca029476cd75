"""sevenzip-backup: sevenzip_backup/snapshot/__init__.py.

Registry of snapshot providers, keyed by the ``Type`` of a
``SnapshotProviders`` entry.
"""

from typing import Any

from .common import SnapshotProvider, SnapshotSession
from .hyperv import HyperVSnapshotProvider
from .vss import VssManager

SNAPSHOT_PROVIDERS: dict[str, type[SnapshotProvider]] = {
    HyperVSnapshotProvider.type_name: HyperVSnapshotProvider,
}


def choose_snapshot_provider(provider_config: dict[str, Any]) -> SnapshotProvider:
    """Instantiate the provider matching ``provider_config['Type']``.

    Raises:
        ValueError: If the type is missing or unknown.
    """
    type_name = provider_config.get("Type")
    provider_class = SNAPSHOT_PROVIDERS.get(str(type_name))
    if provider_class is None:
        raise ValueError(
            f"Unknown snapshot provider type {type_name!r}; "
            f"known types: {', '.join(SNAPSHOT_PROVIDERS)}"
        )
    return provider_class(provider_config)


__all__ = [
    "SNAPSHOT_PROVIDERS",
    "HyperVSnapshotProvider",
    "SnapshotProvider",
    "SnapshotSession",
    "VssManager",
    "choose_snapshot_provider",
]
