"""
Reconciliation Celery tasks.

Auto-match passes are safe to schedule: each entity type runs in its own
transaction and a failing type does not stop the remaining ones.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from celery import shared_task
from flask import current_app

from .descriptors import get_descriptor
from .errors import ReconciliationError
from .service import ReconciliationService


@shared_task(name="reconciliation.healthcheck", bind=True)
def reconciliation_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by worker health checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="reconciliation.auto_match", bind=True)
def run_auto_match(self, *, tenant_id: int, entity_types: Sequence[str] | None = None) -> dict[str, Any]:
    """
    Run the auto-matcher for each entity type of one tenant.

    ``entity_types`` defaults to ``RECON_SCHEDULED_ENTITY_TYPES``.
    """

    keys = [get_descriptor(key).key for key in (entity_types or current_app.config["RECON_SCHEDULED_ENTITY_TYPES"])]
    service = ReconciliationService.from_app()
    results: dict[str, dict[str, Any]] = {}
    failures = 0
    for key in keys:
        try:
            summary = service.auto_match(key, tenant_id)
        except ReconciliationError as exc:
            failures += 1
            current_app.logger.exception("Scheduled auto-match for %s failed", key)
            results[key] = {"status": "failed", "error": str(exc)}
            continue
        results[key] = {"status": "ok", **summary.to_dict()}

    return {
        "tenant_id": tenant_id,
        "status": "failed" if failures else "ok",
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "results": results,
    }


__all__ = ["reconciliation_healthcheck", "run_auto_match"]
