"""Schema exports for API serialization."""

from url_indexing_pipeline.schemas.job import (
    IndexingJobCreate,
    IndexingJobDetail,
    IndexingJobListResponse,
    IndexingJobRead,
    JobLogRead,
    JobProcessResponse,
    JobStatusChangeResponse,
    JobTriggerItem,
    JobTriggerResponse,
)
from url_indexing_pipeline.schemas.quota import AccountQuotaRead, QuotaHealthRead
from url_indexing_pipeline.schemas.service_account import (
    ServiceAccountCreate,
    ServiceAccountRead,
)

__all__ = [
    "AccountQuotaRead",
    "IndexingJobCreate",
    "IndexingJobDetail",
    "IndexingJobListResponse",
    "IndexingJobRead",
    "JobLogRead",
    "JobProcessResponse",
    "JobStatusChangeResponse",
    "JobTriggerItem",
    "JobTriggerResponse",
    "QuotaHealthRead",
    "ServiceAccountCreate",
    "ServiceAccountRead",
]
