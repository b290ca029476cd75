"""Configuration schema definitions using dataclasses.

The configuration files are loaded into a :class:`Config`, which keeps the
global settings and the named tables (jobs, sets, targets, snapshot
providers) apart. Runtime flags become a :class:`CliOverrides`, and the
resolver turns all tiers into one :class:`EffectiveJobConfig` per job run.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .. import __util__

TARGET_INSTANCE_NAME_KEY = "_TargetInstanceName_"


class RunMode(Enum):
    """How the current invocation may interact with the user."""

    QUIET = "quiet"
    INTERACTIVE = "interactive"
    NON_INTERACTIVE = "non-interactive"


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_settings: Top-level keys that are not one of the named tables
        backup_locations: Job name -> job table
        backup_sets: Set name -> set table
        backup_targets: Target name -> remote target table
        snapshot_providers: Provider name -> provider table
        post_run_action_defaults: Global post-run action table
        notification_defaults: Global notification table
        sources: Files the configuration was loaded from, in merge order
    """

    global_settings: dict[str, Any] = field(default_factory=dict)
    backup_locations: dict[str, dict[str, Any]] = field(default_factory=dict)
    backup_sets: dict[str, dict[str, Any]] = field(default_factory=dict)
    backup_targets: dict[str, dict[str, Any]] = field(default_factory=dict)
    snapshot_providers: dict[str, dict[str, Any]] = field(default_factory=dict)
    post_run_action_defaults: dict[str, Any] = field(default_factory=dict)
    notification_defaults: dict[str, Any] = field(default_factory=dict)
    sources: list[Path] = field(default_factory=list)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a global setting."""
        return self.global_settings.get(key, default)

    def job_names(self) -> list[str]:
        return list(self.backup_locations)

    def set_names(self) -> list[str]:
        return list(self.backup_sets)


@dataclass
class CliOverrides:
    """Per-run overrides from the command line (highest precedence tier).

    ``None`` means "not given". The ``use_*``/``enable_*``/``pin`` flags force
    a setting on and the ``skip_*`` flags force it off.
    """

    job_name: Optional[str] = None
    set_name: Optional[str] = None
    skip_jobs: list[str] = field(default_factory=list)
    simulate: bool = False

    use_vss: bool = False
    skip_vss: bool = False
    enable_retries: bool = False
    skip_retries: bool = False
    treat_warnings_as_success: bool = False
    test_archive: bool = False
    verify_before_transfer: bool = False
    pin: bool = False

    priority: Optional[str] = None
    cpu_affinity: Optional[str] = None
    include_list_file: Optional[str] = None
    exclude_list_file: Optional[str] = None

    log_retention_count: Optional[int] = None
    notification_profile: Optional[str] = None

    post_run_action: Optional[str] = None
    post_run_delay_seconds: Optional[int] = None
    post_run_force: bool = False


@dataclass
class ResolvedTarget:
    """A job's private copy of a named ``BackupTargets`` entry."""

    name: str
    type: str
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_registry(cls, name: str, entry: dict[str, Any]) -> "ResolvedTarget":
        settings = copy.deepcopy(entry)
        settings[TARGET_INSTANCE_NAME_KEY] = name
        return cls(name=name, type=str(entry.get("Type", "")), settings=settings)

    @property
    def specific(self) -> dict[str, Any]:
        """The provider specific part of the target definition."""
        return self.settings.get("TargetSpecificSettings", {})


@dataclass
class PostRunActionSettings:
    """System action to perform once the run is over."""

    enabled: bool = False
    action: str = "None"
    delay_seconds: int = 0
    force_action: bool = False
    trigger_on_status: list[str] = field(default_factory=lambda: ["SUCCESS"])

    @classmethod
    def from_table(cls, table: dict[str, Any]) -> "PostRunActionSettings":
        trigger = table.get("TriggerOnStatus", ["SUCCESS"])
        if isinstance(trigger, str):
            trigger = [trigger]
        return cls(
            enabled=__util__.is_flag_true(table.get("Enabled", False)),
            action=str(table.get("Action", "None")),
            delay_seconds=int(table.get("DelaySeconds", 0)),
            force_action=__util__.is_flag_true(table.get("ForceAction", False)),
            trigger_on_status=[str(s).upper() for s in trigger],
        )

    def triggers_on(self, status: str) -> bool:
        return "ANY" in self.trigger_on_status or status.upper() in self.trigger_on_status


@dataclass
class NotificationSettings:
    """Resolved notification settings. Delivery happens elsewhere."""

    enabled: bool = False
    profile_name: Optional[str] = None
    to_address: list[str] = field(default_factory=list)
    trigger_on_status: list[str] = field(default_factory=lambda: ["FAILURE"])

    @classmethod
    def from_table(cls, table: dict[str, Any]) -> "NotificationSettings":
        to_address = table.get("ToAddress", [])
        if isinstance(to_address, str):
            to_address = [to_address]
        trigger = table.get("TriggerOnStatus", ["FAILURE"])
        if isinstance(trigger, str):
            trigger = [trigger]
        return cls(
            enabled=__util__.is_flag_true(table.get("Enabled", False)),
            profile_name=table.get("ProfileName") or None,
            to_address=list(to_address),
            trigger_on_status=[str(s).upper() for s in trigger],
        )


@dataclass
class EffectiveJobConfig:
    """Fully resolved settings for one job run.

    Every field follows ``CLI ?? Set ?? Job ?? Global`` where the tier applies.
    """

    job_name: str
    base_filename: str
    source_paths: list[str]
    destination_dir: str

    # Source handling
    source_is_vm_name: bool = False
    snapshot_provider_name: Optional[str] = None
    on_source_path_not_found: str = "FailJob"

    # Remote targets
    target_names: list[str] = field(default_factory=list)
    resolved_targets: list[ResolvedTarget] = field(default_factory=list)
    delete_local_archive_after_transfer: bool = True

    # Archive naming
    archive_type: str = "-t7z"
    archive_extension: str = ".7z"
    internal_archive_extension: str = ".7z"
    archive_date_format: str = "%Y-%b-%d"
    create_sfx: bool = False
    sfx_module: str = "Console"
    split_volume_size: str = ""

    # 7-Zip parameters
    seven_zip_path: str = "7z"
    compression_level: str = "-mx=7"
    compression_method: str = "-m0=LZMA2"
    dictionary_size: str = "-md=128m"
    word_size: str = "-mfb=64"
    solid_block_size: str = "-ms=16g"
    compress_open_files: bool = True
    thread_count: int = 0
    threads_setting: str = "-mmt"
    cpu_affinity: str = ""
    include_list_file: str = ""
    exclude_list_file: str = ""
    temp_directory: str = ""
    process_priority: str = "Normal"

    # VSS
    enable_vss: bool = False
    vss_context_option: str = "Persistent NoWriters"
    vss_metadata_cache_path: str = ""
    vss_polling_timeout_seconds: int = 120
    vss_polling_interval_seconds: int = 5

    # Retries
    enable_retries: bool = True
    max_retry_attempts: int = 3
    retry_delay_seconds: int = 60

    # Verification
    treat_warnings_as_success: bool = False
    test_archive_after_creation: bool = False
    verify_local_archive_before_transfer: bool = False
    generate_archive_checksum: bool = False
    checksum_algorithm: str = "SHA256"
    verify_archive_checksum_on_test: bool = False
    generate_split_archive_manifest: bool = False
    generate_contents_manifest: bool = False
    pin_on_creation: bool = False

    # Local housekeeping
    local_retention_count: int = 3
    minimum_required_free_space_gb: float = 0
    exit_on_low_space: bool = False
    log_retention_count: int = 30

    # Credentials and hooks
    archive_password_method: str = "None"
    archive_password_plain_text: Optional[str] = None
    archive_password_file_path: Optional[str] = None
    archive_password_secret_name: Optional[str] = None
    pre_backup_script_path: Optional[str] = None
    post_backup_script_on_success_path: Optional[str] = None
    post_backup_script_on_failure_path: Optional[str] = None
    post_backup_script_always_path: Optional[str] = None

    post_run_action: PostRunActionSettings = field(default_factory=PostRunActionSettings)
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    simulate: bool = False

    @property
    def is_split(self) -> bool:
        return bool(self.split_volume_size)

    @property
    def requires_archive_test(self) -> bool:
        return self.test_archive_after_creation or self.verify_local_archive_before_transfer
