"""
Prometheus metrics collection for clm-integration

Counters and histograms for the ETL sessions, the integration router and
the idempotency ledger. All metrics live in a private registry.
"""
import os
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# ETL METRICS
# =======================

records_processed_total = Counter(
    name="clm_records_processed_total",
    documentation="Staged records that reached a terminal staging status",
    labelnames=["entity_kind", "status"],  # status: promoted, rejected
    registry=REGISTRY,
)

validation_failures_total = Counter(
    name="clm_validation_failures_total",
    documentation="Records rejected by transform or validation",
    labelnames=["entity_kind", "error_code", "field_name"],
    registry=REGISTRY,
)

promotions_total = Counter(
    name="clm_promotions_total",
    documentation="Promotion attempts against the target tables",
    labelnames=["entity_kind", "operation", "status"],  # operation: create, update, upsert
    registry=REGISTRY,
)

sessions_total = Counter(
    name="clm_sessions_total",
    documentation="Ingestion sessions that reached a terminal status",
    labelnames=["source_system", "status"],
    registry=REGISTRY,
)

active_sessions = Gauge(
    name="clm_active_sessions",
    documentation="Sessions opened and not yet terminal",
    labelnames=["entity_kind"],
    registry=REGISTRY,
)

session_duration_seconds = Histogram(
    name="clm_session_duration_seconds",
    documentation="Wall time from session open to terminal status",
    labelnames=["source_system"],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0],
    registry=REGISTRY,
)

# =======================
# INTEGRATION METRICS
# =======================

messages_routed_total = Counter(
    name="clm_messages_routed_total",
    documentation="Integration messages by routing outcome",
    labelnames=["event_type", "status"],
    registry=REGISTRY,
)

handler_duration_seconds = Histogram(
    name="clm_handler_duration_seconds",
    documentation="Time spent inside event handlers",
    labelnames=["event_type"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=REGISTRY,
)

ledger_checks_total = Counter(
    name="clm_ledger_checks_total",
    documentation="Idempotency ledger check-and-mark results",
    labelnames=["result"],  # result: first_seen, already_processed, in_progress_conflict
    registry=REGISTRY,
)

aggregations_total = Counter(
    name="clm_aggregations_total",
    documentation="Aggregated deliveries by completeness",
    labelnames=["event_type", "partial"],
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

persistence_errors_total = Counter(
    name="clm_persistence_errors_total",
    documentation="Infrastructure failures surfaced from the repository",
    labelnames=["operation"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render the registry in Prometheus text format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Imported lazily so importing this module never binds a port
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    counter.labels(**labels).inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(session_duration_seconds, source_system="crm"):
            ...
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


# =======================
# DOMAIN HELPERS
# =======================

def record_rejection(entity_kind: str, error_code: str, field_name: str | None = None) -> None:
    increment_counter(
        validation_failures_total, 1,
        entity_kind=entity_kind, error_code=error_code, field_name=field_name or "",
    )
    increment_counter(records_processed_total, 1, entity_kind=entity_kind, status="rejected")


def record_promotion(entity_kind: str, operation: str, success: bool) -> None:
    status = "success" if success else "rejected"
    increment_counter(promotions_total, 1, entity_kind=entity_kind, operation=operation, status=status)
    if success:
        increment_counter(records_processed_total, 1, entity_kind=entity_kind, status="promoted")


def record_session_finished(source_system: str, status: str, duration_seconds: float) -> None:
    """
    Record a session reaching COMPLETED or FAILED.

    Args:
        source_system: Session source system
        status: Terminal session status value
        duration_seconds: Time since the session was opened
    """
    increment_counter(sessions_total, 1, source_system=source_system, status=status)
    if duration_seconds >= 0:
        observe_histogram(session_duration_seconds, duration_seconds, source_system=source_system)


def record_routing(event_type: str, status: str) -> None:
    increment_counter(messages_routed_total, 1, event_type=event_type, status=status)


def record_ledger_check(result: str) -> None:
    increment_counter(ledger_checks_total, 1, result=result)


def record_aggregation(event_type: str, partial: bool) -> None:
    increment_counter(aggregations_total, 1, event_type=event_type, partial=str(partial).lower())


def record_persistence_error(operation: str) -> None:
    increment_counter(persistence_errors_total, 1, operation=operation)
