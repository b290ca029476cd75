"""Job pipeline: pre-processing, local archive, retention and transfer."""

from .pipeline import run_job
from .report import JobReportData, JobStatus, TargetTransferRecord

__all__ = ["JobReportData", "JobStatus", "TargetTransferRecord", "run_job"]
