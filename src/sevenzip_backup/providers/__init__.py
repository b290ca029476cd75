"""sevenzip-backup: sevenzip_backup/providers/__init__.py.

Remote target providers keyed by the ``Type`` of a ``BackupTargets`` entry.
"""

from typing import Optional

from .common import TargetProvider, TransferContext, TransferOutcome
from .sftp import SFTPTargetProvider
from .unc import UNCTargetProvider

PROVIDERS: dict[str, type[TargetProvider]] = {
    UNCTargetProvider.type_name: UNCTargetProvider,
    SFTPTargetProvider.type_name: SFTPTargetProvider,
}


def choose_provider(
    type_name: str, registry: Optional[dict[str, type[TargetProvider]]] = None
) -> Optional[TargetProvider]:
    """Instantiate the provider for ``type_name``, or None when there is none."""
    registry = PROVIDERS if registry is None else registry
    provider_class = registry.get(str(type_name))
    return provider_class() if provider_class is not None else None


__all__ = [
    "PROVIDERS",
    "SFTPTargetProvider",
    "TargetProvider",
    "TransferContext",
    "TransferOutcome",
    "UNCTargetProvider",
    "choose_provider",
]
