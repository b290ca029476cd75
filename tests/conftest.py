"""Pytest configuration and shared fixtures."""

import tomllib
from pathlib import Path

import pytest

from sevenzip_backup.config.loader import build_config
from sevenzip_backup.config.schema import EffectiveJobConfig
from sevenzip_backup.sevenzip.runner import ArchiveEntry, ExecutionResult

GLOBAL_SETTINGS_TOML = """
SevenZipPath = "7z"
DefaultDestinationDir = "/backups"
DefaultArchiveType = "-t7z"
DefaultArchiveExtension = ".7z"
DefaultArchiveDateFormat = "%Y-%m-%d"

DefaultCompressionLevel = "-mx=5"
DefaultCompressionMethod = "-m0=LZMA2"
DefaultDictionarySize = "-md=64m"
DefaultWordSize = "-mfb=64"
DefaultSolidBlockSize = "-ms=4g"
DefaultCompressOpenFiles = true
DefaultThreadCount = 0
DefaultSevenZipProcessPriority = "Normal"

EnableVSS = false
DefaultVSSContextOption = "Persistent NoWriters"
VSSPollingTimeoutSeconds = 60
VSSPollingIntervalSeconds = 2

EnableRetries = true
MaxRetryAttempts = 3
RetryDelaySeconds = 10
TreatSevenZipWarningsAsSuccess = false

DefaultTestArchiveAfterCreation = false
DefaultGenerateArchiveChecksum = true
DefaultChecksumAlgorithm = "SHA256"

DefaultRetentionCount = 3
DefaultLogRetentionCount = 10
"""


@pytest.fixture
def sample_config_toml():
    """Return a sample valid Default.toml string."""
    return (
        GLOBAL_SETTINGS_TOML
        + """
[PostRunActionDefaults]
Enabled = false
Action = "None"
DelaySeconds = 30
TriggerOnStatus = ["SUCCESS"]

[DefaultNotificationSettings]
Enabled = false
TriggerOnStatus = ["FAILURE"]

[BackupTargets.NAS]
Type = "UNC"
[BackupTargets.NAS.TargetSpecificSettings]
UNCRemotePath = "//nas/backups"
CreateJobNameSubdirectory = true

[BackupTargets.Offsite]
Type = "SFTP"
[BackupTargets.Offsite.TargetSpecificSettings]
SFTPServerAddress = "offsite.example.com"
SFTPRemotePath = "/srv/backups"

[BackupLocations.Docs]
Path = "C:/Users/me/Documents"
Name = "Documents"
TargetNames = ["NAS"]

[BackupLocations.Photos]
Path = ["D:/Photos", "E:/Photos"]
DestinationDir = "/photo-backups"
CompressionLevel = "-mx=1"
LogRetentionCount = 4

[BackupLocations.Old]
Path = "C:/Old"
Enabled = false

[BackupSets.Nightly]
JobNames = ["Docs", "Photos", "Docs"]
OnErrorInJob = "ContinueSet"
LogRetentionCount = 2
"""
    )


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid configuration with a single job."""
    return (
        GLOBAL_SETTINGS_TOML
        + """
[BackupLocations.Only]
Path = "C:/Data"
"""
    )


@pytest.fixture
def config_file(tmp_path, sample_config_toml):
    """Create a Default.toml file from the sample configuration."""
    path = tmp_path / "Default.toml"
    path.write_text(sample_config_toml)
    return path


@pytest.fixture
def sample_config(sample_config_toml):
    """Return the sample configuration as a Config object."""
    return build_config(tomllib.loads(sample_config_toml))


@pytest.fixture
def make_config():
    """Build a Config from a TOML string."""

    def _make(text: str):
        return build_config(tomllib.loads(text))

    return _make


@pytest.fixture
def make_effective(tmp_path):
    """Build an EffectiveJobConfig writing into a temporary destination."""

    def _make(**overrides) -> EffectiveJobConfig:
        source = tmp_path / "source"
        source.mkdir(exist_ok=True)
        (source / "file.txt").write_text("data")
        values = {
            "job_name": "Docs",
            "base_filename": "Docs",
            "source_paths": [str(source)],
            "destination_dir": str(tmp_path / "dest"),
            "enable_retries": False,
            "local_retention_count": 0,
        }
        values.update(overrides)
        return EffectiveJobConfig(**values)

    return _make


class FakeRunner:
    """Stand-in for SevenZipRunner that writes small archive files."""

    def __init__(self, exit_code=0, test_exit_code=0, volumes=0, entries=None):
        self.exit_code = exit_code
        self.test_exit_code = test_exit_code
        self.volumes = volumes
        self.entries = entries or []
        self.executed = []
        self.tested = []

    def execute(self, args, priority="Normal", affinity="", password=None, **kwargs):
        self.executed.append((args, priority, affinity, password, kwargs))
        target = Path(args[args.index("-y") + 1])
        target.parent.mkdir(parents=True, exist_ok=True)
        if self.exit_code in (0, 1):
            if self.volumes:
                for n in range(1, self.volumes + 1):
                    target.with_name(f"{target.name}.{n:03d}").write_bytes(b"vol%d" % n)
            else:
                target.write_bytes(b"archive-bytes")
        return ExecutionResult(exit_code=self.exit_code, elapsed_seconds=1.5, attempts=1)

    def test(self, archive_path, password=None, **kwargs):
        self.tested.append(archive_path)
        return ExecutionResult(exit_code=self.test_exit_code)

    def list_contents(self, archive_path, password=None):
        return list(self.entries)


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def archive_entries():
    return [
        ArchiveEntry(path="docs", attributes="D", is_dir=True),
        ArchiveEntry(
            path="docs/a.txt", size=4, modified="2024-01-02 03:04:05", attributes="A", crc="ABCD1234"
        ),
        ArchiveEntry(
            path='docs/"quoted".txt', size=7, modified="2024-01-02 03:04:06", attributes="A", crc="0000FFFF"
        ),
    ]
