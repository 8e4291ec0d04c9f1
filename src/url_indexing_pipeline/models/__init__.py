"""ORM model exports."""

from url_indexing_pipeline import __version__
from url_indexing_pipeline.models.base import Base
from url_indexing_pipeline.models.indexing_job import (
    IndexingJob,
    JobScheduleKind,
    JobSourceKind,
    JobStatus,
)
from url_indexing_pipeline.models.job_log import JobLog
from url_indexing_pipeline.models.quota_usage import QuotaUsageRecord
from url_indexing_pipeline.models.service_account import ServiceAccount
from url_indexing_pipeline.models.url_submission import (
    SubmissionStatus,
    UrlSubmission,
)

__all__ = [
    "__version__",
    "Base",
    "IndexingJob",
    "JobLog",
    "JobScheduleKind",
    "JobSourceKind",
    "JobStatus",
    "QuotaUsageRecord",
    "ServiceAccount",
    "SubmissionStatus",
    "UrlSubmission",
]
