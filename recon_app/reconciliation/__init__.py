"""
Vista reconciliation feature package.

Registers the ``flask recon`` CLI, loads the matching profile and wires the
Celery worker. Everything is recorded in ``app.extensions['reconciliation']``.
"""

from __future__ import annotations

from dataclasses import replace

from flask import Flask

from config.matching import load_profile

from .batch_service import BatchMeta, ImportBatchService
from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_recon_group, recon_cli
from .errors import ConflictError, NotFoundError, ReconciliationError, TransactionFailure, ValidationError
from .service import ReconciliationService

RECON_EXTENSION_KEY = "reconciliation"

__all__ = [
    "RECON_EXTENSION_KEY",
    "BatchMeta",
    "ConflictError",
    "ImportBatchService",
    "NotFoundError",
    "ReconciliationError",
    "ReconciliationService",
    "TransactionFailure",
    "ValidationError",
    "get_celery_app",
    "init_reconciliation",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        RECON_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "profile": None,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    command_name = recon_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    app.cli.add_command(recon_cli if enabled else get_disabled_recon_group())


def init_reconciliation(app: Flask) -> None:
    """
    Configure reconciliation for ``app``.

    Raises:
        MatchingConfigError: The configured matching profile file is invalid.
    """
    enabled = bool(app.config.get("RECON_ENABLED", True))
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("RECON_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Reconciliation disabled via RECON_ENABLED flag; skipping registration.")
        return

    profile = load_profile(app.config)
    minimum = app.config.get("RECON_DEFAULT_MIN_SIMILARITY")
    if minimum is not None:
        profile = replace(profile, default_min_similarity=float(minimum))
    state["profile"] = profile
    if state["worker_enabled"]:
        ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info("Reconciliation enabled (worker=%s)", state["worker_enabled"])
