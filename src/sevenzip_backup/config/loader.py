"""TOML configuration loading and validation.

Handles config file discovery, the defaults/user-override merge, and
structural validation with helpful error messages.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from .merge import deep_merge
from .schema import Config

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


DEFAULT_CONFIG_NAME = "Default.toml"
USER_CONFIG_NAME = "User.toml"

# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "sevenzip-backup" / DEFAULT_CONFIG_NAME,
    Path("/etc/sevenzip-backup") / DEFAULT_CONFIG_NAME,
]

# Keys that hold named tables rather than global settings
TABLE_KEYS = frozenset(
    {
        "BackupLocations",
        "BackupSets",
        "BackupTargets",
        "SnapshotProviders",
        "PostRunActionDefaults",
        "DefaultNotificationSettings",
    }
)


def search_paths() -> list[Path]:
    paths = list(CONFIG_PATHS)
    program_data = os.environ.get("PROGRAMDATA")
    if program_data:
        paths.append(Path(program_data) / "sevenzip-backup" / DEFAULT_CONFIG_NAME)
    return paths


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find the defaults configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in search_paths():
        if path.exists():
            return path

    return None


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")


def _table(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a table, got {type(value).__name__}")
    return value


def _named_tables(data: dict[str, Any], key: str) -> dict[str, dict[str, Any]]:
    tables = _table(data, key)
    for name, entry in tables.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"{key}.{name} must be a table")
    return tables


def _backup_sets(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Backup sets with a single ``JobNames`` string widened to a list."""
    sets = {}
    for name, backup_set in _named_tables(data, "BackupSets").items():
        job_names = backup_set.get("JobNames")
        if isinstance(job_names, str):
            backup_set = {**backup_set, "JobNames": [job_names]}
        sets[name] = backup_set
    return sets


def build_config(data: dict[str, Any], sources: list[Path] | None = None) -> Config:
    """Split a merged configuration tree into a :class:`Config`."""
    return Config(
        global_settings={k: v for k, v in data.items() if k not in TABLE_KEYS},
        backup_locations=_named_tables(data, "BackupLocations"),
        backup_sets=_backup_sets(data),
        backup_targets=_named_tables(data, "BackupTargets"),
        snapshot_providers=_named_tables(data, "SnapshotProviders"),
        post_run_action_defaults=_table(data, "PostRunActionDefaults"),
        notification_defaults=_table(data, "DefaultNotificationSettings"),
        sources=list(sources or []),
    )


def _validate_config(config: Config, known_target_types=()) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.backup_locations:
        warnings.append("No backup locations (jobs) configured")

    for name, job in config.backup_locations.items():
        if not job.get("Path"):
            warnings.append(f"Job '{name}' has no source 'Path' configured")
        for target_name in job.get("TargetNames", []) or []:
            if target_name not in config.backup_targets:
                warnings.append(
                    f"Job '{name}' references unknown target '{target_name}'"
                )

    for name, backup_set in config.backup_sets.items():
        job_names = backup_set.get("JobNames", [])
        if not job_names:
            warnings.append(f"Backup set '{name}' has no JobNames")
        for job_name in job_names:
            if job_name not in config.backup_locations:
                warnings.append(
                    f"Backup set '{name}' references unknown job '{job_name}'"
                )

    for name, target in config.backup_targets.items():
        target_type = target.get("Type")
        if not target_type:
            warnings.append(f"Target '{name}' has no 'Type'")
        elif known_target_types and target_type not in known_target_types:
            warnings.append(f"Target '{name}' has unknown type '{target_type}'")

    return warnings


def load_config(
    path: Path | str, user_path: Path | str | None = None
) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML files.

    The defaults file at ``path`` is read first; the user override file
    (explicit ``user_path``, or ``User.toml`` next to the defaults) is
    deep-merged on top when present.

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)
    data = _read_toml(path)
    sources = [path]

    if user_path is not None:
        user_file = Path(user_path)
        if not user_file.exists():
            raise ConfigError(f"User config file not found: {user_file}")
    else:
        user_file = path.with_name(USER_CONFIG_NAME)

    if user_file.exists() and user_file.resolve() != path.resolve():
        logger.debug("Merging user configuration from %s", user_file)
        data = deep_merge(data, _read_toml(user_file))
        sources.append(user_file)

    config = build_config(data, sources)

    if config.get("EnableAdvancedSchemaValidation", False):
        logger.info(
            "Advanced schema validation is not available in this build; "
            "using structural checks only"
        )

    # Imported here so the provider registry is not a hard dependency of the schema
    from ..providers import PROVIDERS

    warnings = _validate_config(config, known_target_types=tuple(PROVIDERS))

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# sevenzip-backup defaults (Default.toml)
# Put local changes in User.toml next to this file; it is merged on top.

SevenZipPath = "C:\\\\Program Files\\\\7-Zip\\\\7z.exe"
DefaultDestinationDir = "D:\\\\Backups"
DefaultArchiveType = "-t7z"
DefaultArchiveExtension = ".7z"
DefaultArchiveDateFormat = "%Y-%b-%d"
DefaultSFXModule = "Console"

DefaultCompressionLevel = "-mx=7"
DefaultCompressionMethod = "-m0=LZMA2"
DefaultDictionarySize = "-md=128m"
DefaultWordSize = "-mfb=64"
DefaultSolidBlockSize = "-ms=16g"
DefaultCompressOpenFiles = true
DefaultThreadCount = 0              # 0 lets 7-Zip decide
DefaultSevenZipProcessPriority = "Normal"
DefaultSevenZipCPUAffinity = ""

EnableVSS = false
DefaultVSSContextOption = "Persistent NoWriters"
VSSPollingTimeoutSeconds = 120
VSSPollingIntervalSeconds = 5

EnableRetries = true
MaxRetryAttempts = 3
RetryDelaySeconds = 60
TreatSevenZipWarningsAsSuccess = false

DefaultTestArchiveAfterCreation = false
DefaultVerifyLocalArchiveBeforeTransfer = false
DefaultGenerateArchiveChecksum = true
DefaultChecksumAlgorithm = "SHA256"
DefaultVerifyArchiveChecksumOnTest = false
DefaultGenerateSplitArchiveManifest = false
DefaultGenerateContentsManifest = false

DefaultRetentionCount = 3
DefaultDeleteLocalArchiveAfterSuccessfulTransfer = true
MinimumRequiredFreeSpaceGB = 5
ExitOnLowSpaceIfBelowMinimum = false

EnableFileLogging = true
LogDirectory = "Logs"
DefaultLogRetentionCount = 30

[PostRunActionDefaults]
Enabled = false
Action = "None"
DelaySeconds = 60
TriggerOnStatus = ["SUCCESS"]
ForceAction = false

[DefaultNotificationSettings]
Enabled = false
TriggerOnStatus = ["FAILURE", "WARNINGS"]

[BackupTargets.NAS]
Type = "UNC"
[BackupTargets.NAS.TargetSpecificSettings]
UNCRemotePath = "\\\\\\\\nas\\\\backups"
CreateJobNameSubdirectory = true

# [BackupTargets.Offsite]
# Type = "SFTP"
# [BackupTargets.Offsite.TargetSpecificSettings]
# SFTPServerAddress = "backup.example.com"
# SFTPUserName = "backup"
# SFTPRemotePath = "/srv/backups"
# SFTPKeyFilePath = "C:\\\\Users\\\\me\\\\.ssh\\\\id_ed25519"

[BackupLocations.Documents]
Path = "C:\\\\Users\\\\Me\\\\Documents"
Name = "Documents"
TargetNames = ["NAS"]
EnableVSS = true
LocalRetentionCount = 2

[BackupSets.Daily]
JobNames = ["Documents"]
OnErrorInJob = "StopSet"
"""
