"""Effective configuration resolution for a single job.

Every setting is looked up in the tiers ``CLI > Set > Job > Global``. Most
settings only exist at job and global level; the set tier only applies to
the keys that sets may carry (log retention and notifications). Boolean
"skip" switches on the command line force a setting off and "force"
switches force it on, regardless of the lower tiers.

Settings without a safe universal default are *required*: when neither the
job nor the global configuration provides them a :class:`ConfigError` is
raised, naming both keys that were checked.
"""

import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from .. import __util__
from .loader import ConfigError
from .merge import deep_merge
from .schema import (
    CliOverrides,
    Config,
    EffectiveJobConfig,
    NotificationSettings,
    PostRunActionSettings,
    ResolvedTarget,
)

logger = logging.getLogger(__name__)

_MISSING = object()

DATE_DIRECTIVES = frozenset("aAbBdHIjmMpSUWyYz%")
INVALID_FILENAME_CHARS = frozenset('<>:"/\\|?*')
SPLIT_SIZE_RE = re.compile(r"^\d+[kmg]$", re.IGNORECASE)

CHECKSUM_ALGORITHMS = ("SHA1", "SHA256", "SHA384", "SHA512", "MD5")
PROCESS_PRIORITIES = ("Idle", "BelowNormal", "Normal", "AboveNormal", "High")
SFX_MODULES = ("Console", "GUI", "Installer")
PASSWORD_METHODS = ("None", "Interactive", "PlainText", "SecretFile", "EnvironmentVariable")
SOURCE_NOT_FOUND_ACTIONS = ("FailJob", "WarnAndContinue", "SkipJob")


class _Tiers:
    """Lookup helper over the four configuration tiers of one job."""

    def __init__(
        self,
        job_name: str,
        job: dict[str, Any],
        config: Config,
        backup_set: Optional[dict[str, Any]] = None,
    ) -> None:
        self.job_name = job_name
        self.job = job
        self.config = config
        self.backup_set = backup_set or {}

    def value(
        self,
        job_key: str,
        global_key: Optional[str] = None,
        default: Any = _MISSING,
        *,
        cli: Any = None,
        set_key: Optional[str] = None,
    ) -> Any:
        if cli is not None:
            return cli
        if set_key and set_key in self.backup_set:
            return self.backup_set[set_key]
        if job_key in self.job:
            return self.job[job_key]
        if global_key and global_key in self.config.global_settings:
            return self.config.global_settings[global_key]
        return default

    def required(
        self,
        job_key: str,
        global_key: str,
        *,
        cli: Any = None,
        set_key: Optional[str] = None,
    ) -> Any:
        value = self.value(job_key, global_key, cli=cli, set_key=set_key)
        if value is _MISSING:
            raise ConfigError(
                f"Job '{self.job_name}': required setting is missing. Checked job "
                f"key '{job_key}' and global default key '{global_key}'; neither is set."
            )
        return value

    def flag(
        self,
        job_key: str,
        global_key: Optional[str] = None,
        default: Any = _MISSING,
        *,
        force_on: bool = False,
        force_off: bool = False,
    ) -> bool:
        if force_off:
            return False
        if force_on:
            return True
        if default is _MISSING:
            return __util__.is_flag_true(self.required(job_key, global_key or job_key))
        return __util__.is_flag_true(self.value(job_key, global_key, default))

    def integer(self, job_key: str, global_key: str, *, cli: Any = None, **kw) -> int:
        value = self.required(job_key, global_key, cli=cli, **kw)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(
                f"Job '{self.job_name}': '{job_key}' must be an integer, got {value!r}"
            )

    def choice(self, name: str, value: Any, allowed) -> str:
        for option in allowed:
            if str(value).lower() == option.lower():
                return option
        raise ConfigError(
            f"Job '{self.job_name}': invalid {name} {value!r}; "
            f"expected one of {', '.join(allowed)}"
        )


def validate_date_format(fmt: str) -> str:
    """Check that ``fmt`` is a strftime pattern producing a valid file name."""
    if not fmt:
        raise ConfigError("Archive date format is empty")
    i = 0
    while i < len(fmt):
        char = fmt[i]
        if char == "%":
            if i + 1 >= len(fmt) or fmt[i + 1] not in DATE_DIRECTIVES:
                raise ConfigError(f"Malformed archive date format: {fmt!r}")
            i += 2
            continue
        if char in INVALID_FILENAME_CHARS:
            raise ConfigError(
                f"Archive date format {fmt!r} contains {char!r}, "
                "which is not allowed in file names"
            )
        i += 1
    return fmt


def threads_switch(thread_count: int) -> str:
    """7-Zip multithreading switch: ``-mmt=N`` or plain ``-mmt`` for auto."""
    return f"-mmt={thread_count}" if thread_count > 0 else "-mmt"


def _as_list(value: Any) -> list[str]:
    if value is None or value is _MISSING:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value]


def _normalise_extension(ext: str) -> str:
    ext = str(ext).strip()
    return ext if ext.startswith(".") else f".{ext}"


def _optional_str(value: Any) -> Optional[str]:
    if value is _MISSING or value is None or value == "":
        return None
    return str(value)


def _resolve_destination(tiers: _Tiers) -> dict[str, Any]:
    """Destination directory, remote targets and local retention."""
    destination = tiers.required("DestinationDir", "DefaultDestinationDir")
    if not str(destination).strip():
        raise ConfigError(f"Job '{tiers.job_name}': destination directory is empty")

    target_names = _as_list(tiers.job.get("TargetNames"))
    resolved = []
    for name in target_names:
        entry = tiers.config.backup_targets.get(name)
        if entry is None:
            logger.warning(
                "Job '%s': remote target '%s' not found in BackupTargets, skipping it",
                tiers.job_name,
                name,
            )
            continue
        resolved.append(ResolvedTarget.from_registry(name, entry))

    return {
        "destination_dir": str(destination),
        "target_names": target_names,
        "resolved_targets": resolved,
        "delete_local_archive_after_transfer": tiers.flag(
            "DeleteLocalArchiveAfterSuccessfulTransfer",
            "DefaultDeleteLocalArchiveAfterSuccessfulTransfer",
            True,
        ),
        "local_retention_count": tiers.integer(
            "LocalRetentionCount", "DefaultRetentionCount"
        ),
    }


def _resolve_archive(tiers: _Tiers) -> dict[str, Any]:
    """Archive naming: type, extension, date format, SFX and splitting."""
    configured_ext = _normalise_extension(
        tiers.required("ArchiveExtension", "DefaultArchiveExtension")
    )
    date_format = str(tiers.required("ArchiveDateFormat", "DefaultArchiveDateFormat"))
    try:
        validate_date_format(date_format)
    except ConfigError as e:
        raise ConfigError(f"Job '{tiers.job_name}': {e}")

    create_sfx = tiers.flag("CreateSFX", "DefaultCreateSFX", False)
    sfx_module = tiers.choice(
        "SFX module", tiers.value("SFXModule", "DefaultSFXModule", "Console"), SFX_MODULES
    )

    split = str(tiers.value("SplitVolumeSize", "DefaultSplitVolumeSize", "")).strip()
    if split and not SPLIT_SIZE_RE.match(split):
        raise ConfigError(
            f"Job '{tiers.job_name}': invalid SplitVolumeSize {split!r} "
            "(expected a number followed by k, m or g)"
        )
    if create_sfx and split:
        logger.warning(
            "Job '%s': CreateSFX cannot be combined with split volumes; "
            "volumes will use '%s'",
            tiers.job_name,
            configured_ext,
        )

    return {
        "base_filename": str(tiers.job.get("Name") or tiers.job_name),
        "archive_type": str(tiers.required("ArchiveType", "DefaultArchiveType")),
        "archive_extension": ".exe" if create_sfx else configured_ext,
        "internal_archive_extension": configured_ext,
        "archive_date_format": date_format,
        "create_sfx": create_sfx,
        "sfx_module": sfx_module,
        "split_volume_size": split.lower(),
    }


def _resolve_sevenzip_params(tiers: _Tiers, cli: CliOverrides) -> dict[str, Any]:
    """Compression knobs and process settings for the 7-Zip invocation."""
    seven_zip = tiers.config.get("SevenZipPath") or shutil.which("7z") or "7z"
    thread_count = tiers.integer("ThreadsToUse", "DefaultThreadCount")
    priority = tiers.choice(
        "7-Zip process priority",
        tiers.required(
            "SevenZipProcessPriority", "DefaultSevenZipProcessPriority", cli=cli.priority
        ),
        PROCESS_PRIORITIES,
    )

    return {
        "seven_zip_path": str(seven_zip),
        "compression_level": str(
            tiers.required("CompressionLevel", "DefaultCompressionLevel")
        ),
        "compression_method": str(
            tiers.required("CompressionMethod", "DefaultCompressionMethod")
        ),
        "dictionary_size": str(tiers.required("DictionarySize", "DefaultDictionarySize")),
        "word_size": str(tiers.required("WordSize", "DefaultWordSize")),
        "solid_block_size": str(
            tiers.required("SolidBlockSize", "DefaultSolidBlockSize")
        ),
        "compress_open_files": tiers.flag(
            "CompressOpenFiles", "DefaultCompressOpenFiles"
        ),
        "thread_count": thread_count,
        "threads_setting": threads_switch(thread_count),
        "cpu_affinity": str(
            tiers.value(
                "SevenZipCPUAffinity",
                "DefaultSevenZipCPUAffinity",
                "",
                cli=cli.cpu_affinity,
            )
        ).strip(),
        "include_list_file": str(
            tiers.value(
                "SevenZipIncludeListFile",
                "DefaultSevenZipIncludeListFile",
                "",
                cli=cli.include_list_file,
            )
        ),
        "exclude_list_file": str(
            tiers.value(
                "SevenZipExcludeListFile",
                "DefaultSevenZipExcludeListFile",
                "",
                cli=cli.exclude_list_file,
            )
        ),
        "temp_directory": str(
            tiers.value("SevenZipTempDirectory", "DefaultSevenZipTempDirectory", "")
        ),
        "process_priority": priority,
    }


def _resolve_post_run_action(tiers: _Tiers, cli: CliOverrides) -> PostRunActionSettings:
    table = dict(tiers.config.post_run_action_defaults)
    job_table = tiers.job.get("PostRunAction")
    if isinstance(job_table, dict):
        table = deep_merge(table, job_table)

    if cli.post_run_action:
        table["Action"] = cli.post_run_action
        table["Enabled"] = cli.post_run_action.lower() != "none"
    if cli.post_run_delay_seconds is not None:
        table["DelaySeconds"] = cli.post_run_delay_seconds
    if cli.post_run_force:
        table["ForceAction"] = True
    return PostRunActionSettings.from_table(table)


def _resolve_notification(tiers: _Tiers, cli: CliOverrides) -> NotificationSettings:
    table: dict[str, Any] = dict(tiers.config.notification_defaults)
    for layer in (
        tiers.backup_set.get("NotificationSettings"),
        tiers.job.get("NotificationSettings"),
    ):
        if isinstance(layer, dict):
            table = deep_merge(table, layer)
    if cli.notification_profile:
        table["ProfileName"] = cli.notification_profile
        table["Enabled"] = True
    return NotificationSettings.from_table(table)


def _resolve_operational(tiers: _Tiers, cli: CliOverrides) -> dict[str, Any]:
    """VSS, retries, verification, pinning, hooks and run-level settings."""
    provider = _optional_str(tiers.job.get("SnapshotProviderName"))
    if cli.skip_vss:
        enable_vss = False
    elif cli.use_vss or provider:
        enable_vss = True
    else:
        enable_vss = tiers.flag("EnableVSS", "EnableVSS", False)

    cache_path = tiers.config.get("VSSMetadataCachePath") or str(
        Path(tempfile.gettempdir()) / "diskshadow_cache.cab"
    )

    algorithm = tiers.choice(
        "checksum algorithm",
        tiers.required("ChecksumAlgorithm", "DefaultChecksumAlgorithm"),
        CHECKSUM_ALGORITHMS,
    )
    password_method = tiers.choice(
        "archive password method",
        tiers.job.get("ArchivePasswordMethod", "None"),
        PASSWORD_METHODS,
    )
    on_missing = tiers.choice(
        "OnSourcePathNotFound action",
        tiers.value("OnSourcePathNotFound", "DefaultOnSourcePathNotFound", "FailJob"),
        SOURCE_NOT_FOUND_ACTIONS,
    )

    return {
        "snapshot_provider_name": provider,
        "source_is_vm_name": __util__.is_flag_true(tiers.job.get("SourceIsVMName", False)),
        "on_source_path_not_found": on_missing,
        "enable_vss": enable_vss,
        "vss_context_option": str(
            tiers.required("VSSContextOption", "DefaultVSSContextOption")
        ),
        "vss_metadata_cache_path": str(cache_path),
        "vss_polling_timeout_seconds": tiers.integer(
            "VSSPollingTimeoutSeconds", "VSSPollingTimeoutSeconds"
        ),
        "vss_polling_interval_seconds": tiers.integer(
            "VSSPollingIntervalSeconds", "VSSPollingIntervalSeconds"
        ),
        "enable_retries": tiers.flag(
            "EnableRetries",
            "EnableRetries",
            force_on=cli.enable_retries,
            force_off=cli.skip_retries,
        ),
        "max_retry_attempts": tiers.integer("MaxRetryAttempts", "MaxRetryAttempts"),
        "retry_delay_seconds": tiers.integer("RetryDelaySeconds", "RetryDelaySeconds"),
        "treat_warnings_as_success": tiers.flag(
            "TreatSevenZipWarningsAsSuccess",
            "TreatSevenZipWarningsAsSuccess",
            force_on=cli.treat_warnings_as_success,
        ),
        "test_archive_after_creation": tiers.flag(
            "TestArchive",
            "DefaultTestArchiveAfterCreation",
            force_on=cli.test_archive,
        ),
        "verify_local_archive_before_transfer": tiers.flag(
            "VerifyLocalArchiveBeforeTransfer",
            "DefaultVerifyLocalArchiveBeforeTransfer",
            False,
            force_on=cli.verify_before_transfer,
        ),
        "generate_archive_checksum": tiers.flag(
            "GenerateArchiveChecksum", "DefaultGenerateArchiveChecksum"
        ),
        "checksum_algorithm": algorithm,
        "verify_archive_checksum_on_test": tiers.flag(
            "VerifyArchiveChecksumOnTest", "DefaultVerifyArchiveChecksumOnTest", False
        ),
        "generate_split_archive_manifest": tiers.flag(
            "GenerateSplitArchiveManifest", "DefaultGenerateSplitArchiveManifest", False
        ),
        "generate_contents_manifest": tiers.flag(
            "GenerateContentsManifest", "DefaultGenerateContentsManifest", False
        ),
        "pin_on_creation": cli.pin
        or __util__.is_flag_true(tiers.job.get("PinOnCreation", False)),
        "minimum_required_free_space_gb": float(
            tiers.value("MinimumRequiredFreeSpaceGB", "MinimumRequiredFreeSpaceGB", 0)
        ),
        "exit_on_low_space": tiers.flag(
            "ExitOnLowSpaceIfBelowMinimum", "ExitOnLowSpaceIfBelowMinimum", False
        ),
        "log_retention_count": tiers.integer(
            "LogRetentionCount",
            "DefaultLogRetentionCount",
            cli=cli.log_retention_count,
            set_key="LogRetentionCount",
        ),
        "archive_password_method": password_method,
        "archive_password_plain_text": _optional_str(
            tiers.job.get("ArchivePasswordPlainText")
        ),
        "archive_password_file_path": _optional_str(
            tiers.job.get("ArchivePasswordFilePath")
        ),
        "archive_password_secret_name": _optional_str(
            tiers.job.get("ArchivePasswordSecretName")
        ),
        "pre_backup_script_path": _optional_str(tiers.job.get("PreBackupScriptPath")),
        "post_backup_script_on_success_path": _optional_str(
            tiers.job.get("PostBackupScriptOnSuccessPath")
        ),
        "post_backup_script_on_failure_path": _optional_str(
            tiers.job.get("PostBackupScriptOnFailurePath")
        ),
        "post_backup_script_always_path": _optional_str(
            tiers.job.get("PostBackupScriptAlwaysPath")
        ),
        "post_run_action": _resolve_post_run_action(tiers, cli),
        "notification": _resolve_notification(tiers, cli),
        "simulate": cli.simulate,
    }


def resolve_effective_config(
    job_name: str,
    config: Config,
    cli: CliOverrides | None = None,
    set_name: Optional[str] = None,
) -> tuple[EffectiveJobConfig, dict[str, Any]]:
    """Resolve the effective configuration of one job.

    Args:
        job_name: Key of the job in ``BackupLocations``
        config: Loaded configuration (global tier and registries)
        cli: Command line overrides
        set_name: Set the job runs in, if any

    Returns:
        Tuple of (EffectiveJobConfig, report patch). The patch holds the
        resolved values the job report records up front.

    Raises:
        ConfigError: Unknown job, missing required setting, or invalid value
    """
    cli = cli or CliOverrides()
    job = config.backup_locations.get(job_name)
    if job is None:
        raise ConfigError(f"Job '{job_name}' not found in BackupLocations")

    tiers = _Tiers(job_name, job, config, config.backup_sets.get(set_name or ""))

    source_paths = _as_list(job.get("Path"))
    if not source_paths:
        raise ConfigError(f"Job '{job_name}': no source 'Path' configured")

    fields: dict[str, Any] = {}
    fields.update(_resolve_destination(tiers))
    fields.update(_resolve_archive(tiers))
    fields.update(_resolve_sevenzip_params(tiers, cli))
    fields.update(_resolve_operational(tiers, cli))

    effective = EffectiveJobConfig(
        job_name=job_name, source_paths=source_paths, **fields
    )
    logger.debug("Effective configuration for '%s': %s", job_name, effective)

    report_patch = {
        "source_paths": list(source_paths),
        "vss_enabled": effective.enable_vss,
        "retries_enabled": effective.enable_retries,
        "treat_warnings_as_success": effective.treat_warnings_as_success,
        "archive_test_configured": effective.requires_archive_test,
        "pin_requested": effective.pin_on_creation,
        "checksum_algorithm": effective.checksum_algorithm,
        "targets": [t.name for t in effective.resolved_targets],
    }
    return effective, report_patch
