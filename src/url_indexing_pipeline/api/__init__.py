"""API package exports."""

from url_indexing_pipeline import __version__
from url_indexing_pipeline.api.jobs import router as jobs_router
from url_indexing_pipeline.api.monitor import router as monitor_router
from url_indexing_pipeline.api.notifications import router as notifications_router
from url_indexing_pipeline.api.quota import router as quota_router
from url_indexing_pipeline.api.service_accounts import (
    router as service_accounts_router,
)

__all__ = [
    "__version__",
    "jobs_router",
    "monitor_router",
    "notifications_router",
    "quota_router",
    "service_accounts_router",
]
