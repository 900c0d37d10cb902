"""
Prometheus Metrics for Ledger Sync

Custom metrics for webhook intake, reconciliation runs, commit retries and
in-flight scheduling. Metrics live in a per-instance registry and are served
from the webhook app's ``/metrics`` endpoint.
"""

import logging
from typing import Dict, Optional
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    CONTENT_TYPE_LATEST,
    generate_latest,
)

logger = logging.getLogger(__name__)


class SyncMetrics:
    """Prometheus metrics for the sync pipeline."""

    def __init__(self, namespace: str = "ledger_sync", registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            namespace: Metric name prefix
            registry: Prometheus registry (a fresh one if not provided)
        """
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()

        self.webhooks_received_total = Counter(
            f'{namespace}_webhooks_received_total',
            'Webhook notifications received by outcome',
            ['collection', 'status'],
            registry=self.registry
        )

        self.reconciliation_runs_total = Counter(
            f'{namespace}_reconciliation_runs_total',
            'Reconciliation tasks by terminal state',
            ['collection', 'status'],
            registry=self.registry
        )

        self.reconciliation_duration_seconds = Histogram(
            f'{namespace}_reconciliation_duration_seconds',
            'Duration of reconciliation tasks from start to terminal state',
            ['collection'],
            buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
            registry=self.registry
        )

        self.discrepancies_found_total = Counter(
            f'{namespace}_discrepancies_found_total',
            'Records found out of sync by type',
            ['collection', 'discrepancy_type'],
            registry=self.registry
        )

        self.tasks_superseded_total = Counter(
            f'{namespace}_tasks_superseded_total',
            'Reconciliation tasks canceled by a newer notification',
            ['collection'],
            registry=self.registry
        )

        self.retries_total = Counter(
            f'{namespace}_retries_total',
            'Retries of transient remote failures',
            ['operation'],
            registry=self.registry
        )

        self.inflight_tasks = Gauge(
            f'{namespace}_inflight_tasks',
            'Reconciliation tasks currently scheduled or running',
            ['collection'],
            registry=self.registry
        )

        logger.info("SyncMetrics initialized")

    def record_webhook(self, collection: str, status: str) -> None:
        """
        Record a webhook notification.

        Args:
            collection: Webhook type from the path
            status: accepted, invalid_type or invalid_mac
        """
        self.webhooks_received_total.labels(collection=collection, status=status).inc()

    def record_run(self, collection: str, status: str, duration_seconds: float) -> None:
        """
        Record a reconciliation task reaching a terminal state.

        Args:
            collection: Collection key
            status: completed, failed or canceled
            duration_seconds: Time from creation to terminal state
        """
        self.reconciliation_runs_total.labels(collection=collection, status=status).inc()
        self.reconciliation_duration_seconds.labels(collection=collection).observe(duration_seconds)

        logger.debug(
            f"Recorded reconciliation run for {collection}: "
            f"status={status}, duration={duration_seconds:.3f}s"
        )

    def record_discrepancies(self, collection: str, summary: Dict[str, int]) -> None:
        for discrepancy_type in ("added", "removed", "changed"):
            count = summary.get(discrepancy_type, 0)
            if count:
                self.discrepancies_found_total.labels(
                    collection=collection,
                    discrepancy_type=discrepancy_type
                ).inc(count)

    def record_superseded(self, collection: str) -> None:
        self.tasks_superseded_total.labels(collection=collection).inc()

    def record_retry(self, operation: str) -> None:
        self.retries_total.labels(operation=operation).inc()

    def set_inflight(self, collection: str, count: int) -> None:
        self.inflight_tasks.labels(collection=collection).set(count)

    def get_sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of a sample, or None if it has not been recorded."""
        return self.registry.get_sample_value(name, labels or {})

    def export(self) -> bytes:
        """Prometheus text exposition of all metrics."""
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST
