"""Job status values and the per-job report accumulator."""

import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional


class JobStatus(Enum):
    """Outcome of a job or of one of its stages."""

    SUCCESS = "SUCCESS"
    WARNINGS = "WARNINGS"
    FAILURE = "FAILURE"
    SKIPPED = "SKIPPED"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def worst(self, other: "JobStatus") -> "JobStatus":
        """Return whichever of the two statuses is more severe."""
        return self if self.severity >= other.severity else other


_SEVERITY = {
    JobStatus.SUCCESS: 0,
    JobStatus.SKIPPED: 1,
    JobStatus.WARNINGS: 2,
    JobStatus.FAILURE: 3,
}


@dataclass
class TargetTransferRecord:
    """Outcome of transferring one staged file (or the whole set) to a target."""

    target_name: str
    target_type: str
    status: str
    file_name: str = ""
    remote_path: str = ""
    error: str = ""
    duration_seconds: float = 0.0
    size_bytes: int = 0


@dataclass
class JobReportData:
    """Accumulates what every pipeline stage learned about one job run.

    Stages return plain ``dict`` patches keyed by attribute name; the
    pipeline applies them in order with :meth:`apply`.
    """

    job_name: str
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0
    status: JobStatus = JobStatus.SUCCESS
    error_message: str = ""

    source_paths: list[str] = field(default_factory=list)
    effective_source_paths: list[str] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)

    vss_enabled: bool = False
    vss_status: str = "Not Used"
    vss_shadow_paths: dict[str, str] = field(default_factory=dict)
    snapshot_status: str = "Not Used"
    snapshot_session_id: str = ""

    retries_enabled: bool = False
    treat_warnings_as_success: bool = False
    archive_test_configured: bool = False
    pin_requested: bool = False

    archive_path: str = ""
    archive_filename: str = ""
    archive_size_bytes: int = 0
    sevenzip_exit_code: Optional[int] = None
    sevenzip_attempts: int = 0
    compression_seconds: float = 0.0
    stale_volumes_deleted: list[str] = field(default_factory=list)

    contents_manifest_path: str = ""
    checksum_algorithm: str = ""
    checksum_value: str = ""
    checksum_file_path: str = ""
    archive_tested: bool = False
    archive_test_result: str = "Not Performed"
    checksum_verification_status: str = "Not Performed"
    pin_status: str = "Not Requested"

    retention_deleted: list[str] = field(default_factory=list)
    transfer_status: str = "Not Configured"
    target_transfers: list[TargetTransferRecord] = field(default_factory=list)
    local_files_deleted: bool = False

    messages: list[str] = field(default_factory=list)

    def apply(self, patch: dict[str, Any]) -> None:
        """Merge a stage's patch into the report."""
        known = {f.name for f in fields(self)}
        for key, value in patch.items():
            if key not in known:
                raise KeyError(f"Unknown report field: {key}")
            setattr(self, key, value)

    def downgrade(self, status: JobStatus, message: str = "") -> None:
        """Lower the overall status to ``status`` if it is worse."""
        self.status = self.status.worst(status)
        if message:
            self.messages.append(message)
            if status is JobStatus.FAILURE and not self.error_message:
                self.error_message = message

    def finish(self) -> None:
        self.completed_at = time.time()

    @property
    def duration(self) -> float:
        if self.completed_at:
            return self.completed_at - self.started_at
        return time.time() - self.started_at
