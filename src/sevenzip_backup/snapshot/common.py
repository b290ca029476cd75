"""Shared types for snapshot and shadow copy providers."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SnapshotSession:
    """Handle on an infrastructure snapshot created for one job run."""

    success: bool
    session_id: str = ""
    error_message: str = ""
    resource_name: str = ""
    provider_name: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class SnapshotProvider:
    """Generic structure of a snapshot provider.

    Providers create a point-in-time copy of a named resource (for example
    a virtual machine) and expose it as mounted paths until dismounted.
    """

    type_name = "generic"

    def __init__(self, provider_config: dict[str, Any] | None = None) -> None:
        self.config = dict(provider_config or {})

    @property
    def settings(self) -> dict[str, Any]:
        return self.config.get("ProviderSpecificSettings", {})

    def create_snapshot(self, resource_name: str) -> SnapshotSession:
        raise NotImplementedError

    def get_mount_paths(self, session: SnapshotSession) -> list[str]:
        raise NotImplementedError

    def dismount(self, session: SnapshotSession) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config.get('Type', self.type_name)})"
