"""Application entry point for the URL indexing pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
import logging
import signal
from typing import Any

from fastapi import FastAPI, Request
from starlette.responses import Response
import uvicorn

from url_indexing_pipeline import __version__
from url_indexing_pipeline.api import (
    jobs_router,
    monitor_router,
    notifications_router,
    quota_router,
    service_accounts_router,
)
from url_indexing_pipeline.config import Settings, get_settings
from url_indexing_pipeline.database import (
    close_database,
    initialize_database,
    run_startup_database_health_check,
    session_scope,
)
from url_indexing_pipeline.services.account_rotator import AccountRotator
from url_indexing_pipeline.services.credential_vault import CredentialVault
from url_indexing_pipeline.services.google_indexing_client import (
    GoogleIndexingClient,
)
from url_indexing_pipeline.services.job_control import JobControlService
from url_indexing_pipeline.services.job_log_service import JobLogService
from url_indexing_pipeline.services.job_monitor import JobMonitor
from url_indexing_pipeline.services.job_orchestrator import (
    JobOrchestrator,
    SessionScopeFactory,
)
from url_indexing_pipeline.services.job_service import JobService
from url_indexing_pipeline.services.job_recovery_service import JobRecoveryService
from url_indexing_pipeline.services.notifier import (
    BroadcastJobNotifier,
    CompositeJobNotifier,
    LoggingJobNotifier,
)
from url_indexing_pipeline.services.quota_service import QuotaService
from url_indexing_pipeline.services.scheduler import SchedulerService
from url_indexing_pipeline.services.secret_box import AesCbcSecretBox
from url_indexing_pipeline.services.service_account_service import (
    ServiceAccountService,
)
from url_indexing_pipeline.services.submission_ledger import SubmissionLedger
from url_indexing_pipeline.services.url_source_resolver import UrlSourceResolver
from url_indexing_pipeline.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = [
    "PipelineServices",
    "app",
    "attach_services",
    "build_services",
    "create_app",
    "main",
]

_lifecycle_logger = logging.getLogger("url_indexing_pipeline.lifecycle")


@dataclass(slots=True, frozen=True)
class PipelineServices:
    """Every long-lived service of one worker process."""

    scheduler: SchedulerService
    recovery: JobRecoveryService
    orchestrator: JobOrchestrator
    monitor: JobMonitor
    control: JobControlService
    jobs: JobService
    accounts: ServiceAccountService
    job_logs: JobLogService
    quota: QuotaService
    broadcaster: BroadcastJobNotifier


def build_services(
    settings: Settings,
    *,
    session_factory: SessionScopeFactory = session_scope,
) -> PipelineServices:
    """Wire the pipeline from settings; tests pass their own session factory."""

    secret_box = AesCbcSecretBox.from_settings(settings)
    vault = CredentialVault(
        secret_box=secret_box,
        session_factory=session_factory,
        expiry_buffer=timedelta(seconds=settings.TOKEN_EXPIRY_BUFFER_SECONDS),
        http_timeout_seconds=settings.GOOGLE_HTTP_TIMEOUT_SECONDS,
    )
    quota = QuotaService(session_factory=session_factory)
    job_logs = JobLogService(session_factory=session_factory)
    broadcaster = BroadcastJobNotifier()
    orchestrator = JobOrchestrator(
        resolver=UrlSourceResolver(
            max_depth=settings.SITEMAP_MAX_DEPTH,
            fetch_timeout_seconds=settings.SITEMAP_FETCH_TIMEOUT_SECONDS,
            fetch_max_retries=settings.SITEMAP_FETCH_MAX_RETRIES,
        ),
        ledger=SubmissionLedger(
            session_factory=session_factory,
            batch_size=settings.LEDGER_INSERT_BATCH_SIZE,
        ),
        rotator=AccountRotator(token_provider=vault, session_factory=session_factory),
        indexing_client=GoogleIndexingClient(
            timeout_seconds=settings.GOOGLE_HTTP_TIMEOUT_SECONDS
        ),
        quota_service=quota,
        notifier=CompositeJobNotifier([LoggingJobNotifier(), broadcaster]),
        job_logs=job_logs,
        session_factory=session_factory,
        worker_id=settings.WORKER_ID,
        submission_delay_seconds=settings.SUBMISSION_DELAY_SECONDS,
    )
    scheduler = SchedulerService.from_settings(settings)
    recovery = JobRecoveryService(session_factory=session_factory)
    monitor = JobMonitor.from_settings(
        settings,
        orchestrator=orchestrator,
        scheduler=scheduler,
        recovery=recovery,
        session_factory=session_factory,
    )
    return PipelineServices(
        scheduler=scheduler,
        recovery=recovery,
        orchestrator=orchestrator,
        monitor=monitor,
        control=JobControlService(session_factory=session_factory),
        jobs=JobService(session_factory=session_factory),
        accounts=ServiceAccountService(
            secret_box=secret_box, session_factory=session_factory
        ),
        job_logs=job_logs,
        quota=quota,
        broadcaster=broadcaster,
    )


def attach_services(app: FastAPI, services: PipelineServices) -> None:
    app.state.scheduler_service = services.scheduler
    app.state.recovery_service = services.recovery
    app.state.job_orchestrator = services.orchestrator
    app.state.job_monitor = services.monitor
    app.state.job_control_service = services.control
    app.state.job_service = services.jobs
    app.state.service_account_service = services.accounts
    app.state.job_log_service = services.job_logs
    app.state.quota_service = services.quota
    app.state.job_broadcaster = services.broadcaster


def _initialize_lifecycle_state(app: FastAPI) -> None:
    app.state.inflight_requests = 0
    app.state.requests_drained = asyncio.Event()
    app.state.requests_drained.set()
    app.state.shutdown_requested = asyncio.Event()
    app.state.shutdown_signal = None


def _handle_shutdown_signal(app: FastAPI, signum: int) -> None:
    if app.state.shutdown_requested.is_set():
        return

    app.state.shutdown_signal = signal.Signals(signum).name
    app.state.shutdown_requested.set()
    _lifecycle_logger.warning(
        "shutdown_signal_received",
        extra={"signal": app.state.shutdown_signal},
    )


async def _wait_for_inflight_requests(app: FastAPI, *, timeout_seconds: int) -> bool:
    if app.state.inflight_requests <= 0:
        return True

    try:
        await asyncio.wait_for(
            app.state.requests_drained.wait(), timeout=timeout_seconds
        )
    except TimeoutError:
        return False

    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    _initialize_lifecycle_state(app)

    services = build_services(settings)
    attach_services(app, services)

    previous_handlers: dict[signal.Signals, Any] = {}
    for handled_signal in (signal.SIGTERM, signal.SIGINT):
        previous_handlers[handled_signal] = signal.getsignal(handled_signal)

        def _signal_handler(signum: int, frame: object | None) -> None:
            _handle_shutdown_signal(app, signum)
            previous_handler = previous_handlers[signal.Signals(signum)]
            if callable(previous_handler):
                previous_handler(signum, frame)

        signal.signal(handled_signal, _signal_handler)

    await initialize_database()
    await run_startup_database_health_check()
    reclaimed = await services.monitor.sweep_stale()
    _lifecycle_logger.info(
        "startup_recovery_summary",
        extra={
            "worker_id": services.orchestrator.worker_id,
            "count": len(reclaimed),
            "job_counts": await services.recovery.count_jobs_by_status(),
        },
    )
    services.monitor.register_jobs()
    await services.scheduler.start()

    try:
        yield
    finally:
        graceful_shutdown = await _wait_for_inflight_requests(
            app,
            timeout_seconds=settings.SHUTDOWN_GRACE_PERIOD_SECONDS,
        )
        await services.scheduler.shutdown()
        released = await services.monitor.shutdown()
        _lifecycle_logger.info(
            "shutdown_summary",
            extra={
                "worker_id": services.orchestrator.worker_id,
                "jobs_marked_interrupted": len(released),
                "graceful_shutdown": graceful_shutdown,
                "inflight_requests": app.state.inflight_requests,
                "signal": app.state.shutdown_signal,
            },
        )
        for handled_signal, previous_handler in previous_handlers.items():
            signal.signal(handled_signal, previous_handler)
        await close_database()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="URL Indexing Pipeline",
        version=__version__,
        lifespan=lifespan,
    )
    _initialize_lifecycle_state(app)

    @app.middleware("http")
    async def track_inflight_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        app.state.inflight_requests = (
            int(getattr(app.state, "inflight_requests", 0)) + 1
        )
        requests_drained = getattr(app.state, "requests_drained", None)
        if requests_drained is None:
            requests_drained = asyncio.Event()
            app.state.requests_drained = requests_drained
        requests_drained.clear()
        try:
            response = await call_next(request)
        finally:
            app.state.inflight_requests = max(0, app.state.inflight_requests - 1)
            if app.state.inflight_requests == 0:
                requests_drained.set()
        return response

    app.state.settings = settings
    add_request_logging_middleware(app)
    app.include_router(jobs_router)
    app.include_router(quota_router)
    app.include_router(monitor_router)
    app.include_router(service_accounts_router)
    app.include_router(notifications_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "url_indexing_pipeline.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )
