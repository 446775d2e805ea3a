"""
Celery wiring for the reconciliation worker.

The worker runs scheduled auto-match passes. Each tenant listed in
``RECON_SCHEDULED_TENANTS`` gets a beat entry that queues
``reconciliation.auto_match`` every ``RECON_AUTO_MATCH_INTERVAL`` seconds
for the types in ``RECON_SCHEDULED_ENTITY_TYPES``.

Without ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` the broker and result
backend share a SQLite file in the Flask instance folder.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "reconciliation"
AUTO_MATCH_TASK = "reconciliation.auto_match"


def _sqlite_transport_urls(app: Flask) -> tuple[str, str]:
    configured = app.config.get("CELERY_SQLITE_PATH") or "celery.sqlite"
    path = Path(configured)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    # Celery expects forward slashes even on Windows.
    return f"sqla+sqlite:///{path.as_posix()}", f"db+sqlite:///{path.as_posix()}"


def transport_urls(app: Flask) -> tuple[str, str]:
    """Broker and result backend URLs, falling back to the SQLite transport."""

    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend
    default_broker, default_backend = _sqlite_transport_urls(app)
    return broker_url or default_broker, result_backend or default_backend


def build_beat_schedule(config: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """One periodic auto-match entry per scheduled tenant, expiring after one interval."""

    interval = float(config.get("RECON_AUTO_MATCH_INTERVAL", 3600))
    entity_types = list(config.get("RECON_SCHEDULED_ENTITY_TYPES") or ())
    schedule: dict[str, dict[str, Any]] = {}
    for tenant_id in config.get("RECON_SCHEDULED_TENANTS") or ():
        schedule[f"auto-match-tenant-{tenant_id}"] = {
            "task": AUTO_MATCH_TASK,
            "schedule": interval,
            "kwargs": {"tenant_id": int(tenant_id), "entity_types": entity_types or None},
            "options": {"queue": DEFAULT_QUEUE_NAME, "expires": interval},
        }
    return schedule


def _extra_conf(app: Flask) -> Mapping[str, Any] | None:
    extra_conf: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if isinstance(extra_conf, str):
        try:
            return json.loads(extra_conf)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            return None
    return extra_conf


def create_celery_app(app: Flask) -> Celery:
    """Create the reconciliation Celery app; its tasks run inside ``app``'s context."""

    broker_url, result_backend = transport_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("recon_app.reconciliation.tasks",),
    )
    beat_schedule = build_beat_schedule(app.config)
    celery_app.conf.update(
        task_default_queue=DEFAULT_QUEUE_NAME,
        task_queues=[Queue(DEFAULT_QUEUE_NAME)],
        task_routes={"reconciliation.*": {"queue": DEFAULT_QUEUE_NAME}},
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("RECON_TASK_TIME_LIMIT", 15 * 60),
        task_soft_time_limit=app.config.get("RECON_TASK_SOFT_TIME_LIMIT", 12 * 60),
        beat_schedule=beat_schedule,
        timezone="UTC",
        worker_hijack_root_logger=False,
    )

    extra_conf = _extra_conf(app)
    if extra_conf:
        celery_app.conf.update(extra_conf)
    app.logger.info(
        "Reconciliation Celery configured with %s scheduled tenant(s)",
        len(beat_schedule),
        extra={"recon_celery_broker_url": broker_url, "recon_celery_result_backend": result_backend},
    )

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Celery instance of the reconciliation extension, created on first use."""

    state: dict[str, Any] | None = app.extensions.get("reconciliation")  # type: ignore[arg-type]
    if not state or not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)


__all__ = [
    "AUTO_MATCH_TASK",
    "DEFAULT_QUEUE_NAME",
    "build_beat_schedule",
    "create_celery_app",
    "ensure_celery_app",
    "get_celery_app",
    "transport_urls",
]
