"""Accessors for services created by the application lifespan."""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException, Request, status

from url_indexing_pipeline.services.job_control import JobControlService
from url_indexing_pipeline.services.job_log_service import JobLogService
from url_indexing_pipeline.services.job_monitor import JobMonitor
from url_indexing_pipeline.services.job_orchestrator import JobOrchestrator
from url_indexing_pipeline.services.job_service import JobService
from url_indexing_pipeline.services.notifier import BroadcastJobNotifier
from url_indexing_pipeline.services.quota_service import QuotaService
from url_indexing_pipeline.services.scheduler import SchedulerService
from url_indexing_pipeline.services.service_account_service import (
    ServiceAccountService,
)

ServiceT = TypeVar("ServiceT")


def _require_state_service(
    request: Request,
    attribute: str,
    service_type: type[ServiceT],
    label: str,
) -> ServiceT:
    service = getattr(request.app.state, attribute, None)
    if isinstance(service, service_type):
        return service

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{label} is unavailable",
    )


def get_job_orchestrator(request: Request) -> JobOrchestrator:
    return _require_state_service(
        request, "job_orchestrator", JobOrchestrator, "Job orchestrator"
    )


def get_job_monitor(request: Request) -> JobMonitor:
    return _require_state_service(request, "job_monitor", JobMonitor, "Job monitor")


def get_job_control_service(request: Request) -> JobControlService:
    return _require_state_service(
        request, "job_control_service", JobControlService, "Job control service"
    )


def get_job_log_service(request: Request) -> JobLogService:
    return _require_state_service(
        request, "job_log_service", JobLogService, "Job log service"
    )


def get_job_service(request: Request) -> JobService:
    return _require_state_service(request, "job_service", JobService, "Job service")


def get_service_account_service(request: Request) -> ServiceAccountService:
    return _require_state_service(
        request,
        "service_account_service",
        ServiceAccountService,
        "Service account service",
    )


def get_quota_service(request: Request) -> QuotaService:
    return _require_state_service(
        request, "quota_service", QuotaService, "Quota service"
    )


def get_scheduler_service(request: Request) -> SchedulerService:
    return _require_state_service(
        request, "scheduler_service", SchedulerService, "Scheduler service"
    )


def get_job_broadcaster(request: Request) -> BroadcastJobNotifier:
    return _require_state_service(
        request, "job_broadcaster", BroadcastJobNotifier, "Job event broadcaster"
    )


__all__ = [
    "get_job_broadcaster",
    "get_job_control_service",
    "get_job_log_service",
    "get_job_monitor",
    "get_job_orchestrator",
    "get_job_service",
    "get_quota_service",
    "get_scheduler_service",
    "get_service_account_service",
]
