"""Prometheus metrics helpers for reconciliation runs."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_import_rows_counter = Counter(
    "recon_import_rows_total",
    "Vista rows processed by import outcome.",
    ["entity_type", "outcome"],
)
_auto_match_counter = Counter(
    "recon_auto_match_records_total",
    "Records examined by the auto-matcher by outcome.",
    ["entity_type", "outcome"],
)
_auto_match_duration = Histogram(
    "recon_auto_match_duration_seconds",
    "Duration of auto-match passes in seconds.",
    ["entity_type"],
    buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60),
)
_promotion_counter = Counter(
    "recon_promoted_records_total",
    "External records promoted to new canonical entities.",
    ["entity_type"],
)
_link_counter = Counter(
    "recon_link_transitions_total",
    "Link state transitions applied by operators.",
    ["entity_type", "transition"],
)
_link_conflict_counter = Counter(
    "recon_link_conflicts_total",
    "Link attempts rejected because the canonical entity was already claimed.",
    ["entity_type"],
)


def record_import_row(entity_type: str, outcome: Literal["new", "updated", "skipped"]) -> None:
    """Increment the import row counter."""

    _import_rows_counter.labels(entity_type=entity_type, outcome=outcome).inc()


def record_auto_match(entity_type: str, *, matched: int, total: int, duration_seconds: float) -> None:
    """Capture the outcome of one auto-match pass."""

    _auto_match_counter.labels(entity_type=entity_type, outcome="matched").inc(matched)
    _auto_match_counter.labels(entity_type=entity_type, outcome="unmatched").inc(max(0, total - matched))
    _auto_match_duration.labels(entity_type=entity_type).observe(duration_seconds)


def record_promotion(entity_type: str, count: int) -> None:
    if count:
        _promotion_counter.labels(entity_type=entity_type).inc(count)


def record_link_transition(entity_type: str, transition: Literal["link", "unlink", "ignore", "auto_link"]) -> None:
    _link_counter.labels(entity_type=entity_type, transition=transition).inc()


def record_link_conflict(entity_type: str) -> None:
    _link_conflict_counter.labels(entity_type=entity_type).inc()


__all__ = [
    "record_auto_match",
    "record_import_row",
    "record_link_conflict",
    "record_link_transition",
    "record_promotion",
]
