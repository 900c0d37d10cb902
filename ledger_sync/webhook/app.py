"""
Webhook HTTP surface.

``POST /webhook/{type}`` verifies the notification and acknowledges it
immediately; the reconciliation is scheduled as a post-response background
task, so the notifier never waits on ledger latency.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ledger_sync.config import SyncSettings
from ledger_sync.errors import AuthenticationError, SyncError, ValidationError
from ledger_sync.monitoring.metrics import SyncMetrics
from ledger_sync.reconciliation.reconciler import Reconciler
from ledger_sync.scheduler import TaskScheduler
from ledger_sync.stores.airtable import AirtableTableStore
from ledger_sync.stores.near import NearLedgerStore
from ledger_sync.utils.correlation import (
    CorrelationContext,
    extract_correlation_id_from_headers,
    generate_correlation_id,
)
from ledger_sync.utils.retry import RetryExecutor
from ledger_sync.webhook.verifier import LEGACY_MAC_HEADER, MAC_HEADER, AuthenticityVerifier

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def _error_response(error: SyncError, status_code: int, correlation_id: Optional[str]) -> JSONResponse:
    headers = {"X-Request-ID": correlation_id} if correlation_id else None
    return JSONResponse(status_code=status_code, content={"error": str(error)}, headers=headers)


def create_app(
    scheduler: TaskScheduler,
    verifier: AuthenticityVerifier,
    metrics: Optional[SyncMetrics] = None
) -> FastAPI:
    """
    Build the FastAPI app around an existing scheduler and verifier.

    Args:
        scheduler: Process-wide task scheduler
        verifier: Verifier holding the per-collection secrets
        metrics: Metrics served from /metrics
    """
    metrics = metrics or SyncMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Webhook service ready for {verifier.collections}")
        yield
        await scheduler.shutdown()

    app = FastAPI(title="ledger-sync webhook service", version=APP_VERSION, lifespan=lifespan)
    app.state.scheduler = scheduler
    app.state.verifier = verifier
    app.state.metrics = metrics

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return _error_response(exc, 400, getattr(request.state, "correlation_id", None))

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(exc, 403, getattr(request.state, "correlation_id", None))

    @app.post("/webhook/{webhook_type}")
    async def receive_webhook(webhook_type: str, request: Request, background_tasks: BackgroundTasks):
        correlation_id = extract_correlation_id_from_headers(request.headers) or generate_correlation_id()
        request.state.correlation_id = correlation_id

        with CorrelationContext(correlation_id):
            if webhook_type not in verifier.collections:
                metrics.record_webhook(webhook_type, "invalid_type")
                logger.warning(f"Rejected webhook with unknown type '{webhook_type}'")
                raise ValidationError(f"Unknown webhook type: {webhook_type}")

            body = await request.body()
            tag = request.headers.get(MAC_HEADER) or request.headers.get(LEGACY_MAC_HEADER)

            if not verifier.verify_collection(webhook_type, body, tag):
                metrics.record_webhook(webhook_type, "invalid_mac")
                raise AuthenticationError("Invalid MAC signature")

            metrics.record_webhook(webhook_type, "accepted")
            logger.info(f"Accepted {webhook_type} webhook ({len(body)} bytes)")

        async def schedule():
            scheduler.enqueue(webhook_type, payload=body, correlation_id=correlation_id)

        background_tasks.add_task(schedule)

        return JSONResponse(
            status_code=200,
            content={"message": f"Webhook received for {webhook_type}; reconciliation scheduled"},
            headers={"X-Request-ID": correlation_id}
        )

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": APP_VERSION,
            "collections": verifier.collections,
            "active_tasks": scheduler.active_tasks(),
        }

    @app.get("/metrics")
    async def metrics_endpoint():
        return Response(content=metrics.export(), media_type=metrics.content_type)

    return app


def build_scheduler(settings: SyncSettings, metrics: Optional[SyncMetrics] = None) -> TaskScheduler:
    """Wire stores, reconciler and retry executor from settings."""
    table_store = AirtableTableStore(
        base_id=settings.airtable_base_id,
        token=settings.airtable_token,
        collections=settings.collections,
        api_url=settings.airtable_api_url,
        timeout=settings.request_timeout_seconds
    )
    ledger_store = NearLedgerStore(
        rpc_url=settings.rpc_url,
        contract_id=settings.contract_id,
        collections=settings.collections,
        signer_url=settings.signer_url,
        signer_token=settings.signer_token,
        signer_account_id=settings.signer_account_id,
        gas=settings.commit_gas,
        deposit=settings.commit_deposit,
        poll_max_attempts=settings.poll_max_attempts,
        poll_interval=settings.poll_interval_seconds,
        timeout=settings.request_timeout_seconds
    )
    reconciler = Reconciler(
        table_store,
        ledger_store,
        key_fields={
            key: c.key_field for key, c in settings.collections.items() if c.key_field
        },
        metrics=metrics
    )
    retry_executor = RetryExecutor(
        max_attempts=settings.retry.max_attempts,
        initial_delay=settings.retry.initial_delay_seconds,
        max_delay=settings.retry.max_delay_seconds,
        jitter=settings.retry.jitter,
        metrics=metrics
    )
    return TaskScheduler(
        reconciler,
        ledger_store,
        retry_executor=retry_executor,
        coalesce_delay=settings.coalesce_delay_seconds,
        metrics=metrics
    )


def create_app_from_settings(settings: SyncSettings) -> FastAPI:
    metrics = SyncMetrics()
    scheduler = build_scheduler(settings, metrics=metrics)
    verifier = AuthenticityVerifier(settings.mac_secrets())
    return create_app(scheduler, verifier, metrics=metrics)
