"""Service layer of the URL indexing pipeline."""

from url_indexing_pipeline import __version__
from url_indexing_pipeline.services.secret_box import (
    AesCbcSecretBox,
    SecretBox,
    SecretBoxError,
)
from url_indexing_pipeline.services.google_credentials import (
    AccessToken,
    GoogleCredentialsError,
)
from url_indexing_pipeline.services.credential_vault import CredentialVault
from url_indexing_pipeline.services.quota_service import (
    QuotaHealth,
    QuotaHealthSummary,
    QuotaService,
)
from url_indexing_pipeline.services.account_rotator import (
    AccountLease,
    AccountRotation,
    AccountRotator,
    NoActiveAccountsError,
    NoUsableAccountsError,
)
from url_indexing_pipeline.services.sitemap_fetcher import (
    SitemapFetchError,
    SitemapFetchResult,
    fetch_sitemap,
)
from url_indexing_pipeline.services.sitemap_parser import (
    ParsedSitemap,
    SitemapKind,
    SitemapParseError,
    parse_sitemap,
)
from url_indexing_pipeline.services.url_source_resolver import (
    SitemapCircularReferenceError,
    SitemapDepthExceededError,
    UrlExtractionError,
    UrlSourceResolver,
)
from url_indexing_pipeline.services.submission_ledger import (
    PendingSubmission,
    SubmissionLedger,
)
from url_indexing_pipeline.services.google_errors import (
    AuthenticationError,
    GoogleAPIError,
    InvalidURLError,
    QuotaExceededError,
)
from url_indexing_pipeline.services.google_indexing_client import (
    GoogleIndexingClient,
    IndexingURLResult,
)
from url_indexing_pipeline.services.job_log_service import JobLogService
from url_indexing_pipeline.services.notifier import (
    BroadcastJobNotifier,
    CompositeJobNotifier,
    JobEventNotifier,
    JobProgressEvent,
    LoggingJobNotifier,
    UrlStatusEvent,
)
from url_indexing_pipeline.services.job_orchestrator import (
    JobOrchestrator,
    JobProcessResult,
)
from url_indexing_pipeline.services.job_recovery_service import (
    InterruptedJobRecord,
    JobRecoveryService,
)
from url_indexing_pipeline.services.job_control import (
    JobControlService,
    JobNotFoundError,
    JobStateConflictError,
)
from url_indexing_pipeline.services.scheduler import (
    SchedulerJobState,
    SchedulerService,
)
from url_indexing_pipeline.services.job_monitor import (
    JobMonitor,
    JobTriggerResult,
    MonitorStatus,
    compute_next_run_at,
)
from url_indexing_pipeline.services.job_service import (
    JobPage,
    JobService,
    JobValidationError,
)
from url_indexing_pipeline.services.service_account_service import (
    ServiceAccountConflictError,
    ServiceAccountService,
    ServiceAccountValidationError,
)

__all__ = [
    "__version__",
    "AccessToken",
    "AccountLease",
    "AccountRotation",
    "AccountRotator",
    "AesCbcSecretBox",
    "AuthenticationError",
    "BroadcastJobNotifier",
    "CompositeJobNotifier",
    "CredentialVault",
    "GoogleAPIError",
    "GoogleCredentialsError",
    "GoogleIndexingClient",
    "IndexingURLResult",
    "InterruptedJobRecord",
    "InvalidURLError",
    "JobControlService",
    "JobEventNotifier",
    "JobLogService",
    "JobMonitor",
    "JobNotFoundError",
    "JobOrchestrator",
    "JobPage",
    "JobProcessResult",
    "JobProgressEvent",
    "JobRecoveryService",
    "JobService",
    "JobStateConflictError",
    "JobTriggerResult",
    "JobValidationError",
    "LoggingJobNotifier",
    "MonitorStatus",
    "NoActiveAccountsError",
    "NoUsableAccountsError",
    "ParsedSitemap",
    "PendingSubmission",
    "QuotaExceededError",
    "QuotaHealth",
    "QuotaHealthSummary",
    "QuotaService",
    "SchedulerJobState",
    "SchedulerService",
    "SecretBox",
    "SecretBoxError",
    "ServiceAccountConflictError",
    "ServiceAccountService",
    "ServiceAccountValidationError",
    "SitemapCircularReferenceError",
    "SitemapDepthExceededError",
    "SitemapFetchError",
    "SitemapFetchResult",
    "SitemapKind",
    "SitemapParseError",
    "SubmissionLedger",
    "UrlExtractionError",
    "UrlStatusEvent",
    "UrlSourceResolver",
    "compute_next_run_at",
    "fetch_sitemap",
    "parse_sitemap",
]
