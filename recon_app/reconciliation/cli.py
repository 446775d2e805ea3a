"""
``flask recon`` commands.

Every command prints a JSON payload on success. Reconciliation errors are
reported through :class:`click.ClickException` so the exit status is non-zero.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Optional

import click
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import AppGroup

from .batch_service import BatchMeta, serialize_batch
from .celery_app import AUTO_MATCH_TASK, DEFAULT_QUEUE_NAME, get_celery_app
from .descriptors import ENTITY_DESCRIPTORS, get_descriptor
from .errors import ConflictError, ReconciliationError
from .service import ReconciliationService

tenant_option = click.option(
    "--tenant",
    "tenant_id",
    type=int,
    required=True,
    envvar="RECON_TENANT_ID",
    help="Tenant whose records are reconciled.",
)
actor_option = click.option(
    "--actor",
    "actor_id",
    type=int,
    default=None,
    envvar="RECON_ACTOR_ID",
    help="User id recorded as the actor.",
)
entity_argument = click.argument("entity_type", type=click.Choice(list(ENTITY_DESCRIPTORS), case_sensitive=False))


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _service() -> ReconciliationService:
    return ReconciliationService.from_app()


def _fail(exc: ReconciliationError) -> click.ClickException:
    if isinstance(exc, ConflictError):
        return click.ClickException(f"{exc} [{json.dumps(exc.to_dict(), default=str)}]")
    return click.ClickException(str(exc))


def _read_csv(path: Path) -> list[dict[str, str]]:
    # utf-8-sig drops the byte order mark Vista exports carry.
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        return [dict(row) for row in csv.DictReader(handle)]


def _parse_extra_links(values: tuple[str, ...]) -> dict[str, int | None]:
    links: dict[str, int | None] = {}
    for value in values:
        kind, sep, raw_id = value.partition("=")
        if not sep or not kind.strip():
            raise click.BadParameter(f"expected KIND=ID, got {value!r}", param_hint="--extra")
        raw_id = raw_id.strip()
        if raw_id.lower() in ("", "none", "null"):
            links[kind.strip()] = None
            continue
        try:
            links[kind.strip()] = int(raw_id)
        except ValueError as exc:
            raise click.BadParameter(f"{raw_id!r} is not an id", param_hint="--extra") from exc
    return links


recon_cli = AppGroup("recon", help="Vista reconciliation commands.")


def get_disabled_recon_group() -> click.Group:
    """Command group that tells the operator reconciliation is switched off."""

    @click.group(name="recon", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Reconciliation commands are unavailable because RECON_ENABLED=false.")

    return disabled_group


# Imports ------------------------------------------------------------------


@recon_cli.command("import")
@entity_argument
@click.option(
    "--file",
    "file_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="CSV extract exported from Vista.",
)
@tenant_option
@actor_option
@click.option("--auto-match/--no-auto-match", default=False, help="Run the auto-matcher after importing.")
def import_command(entity_type: str, file_path: Path, tenant_id: int, actor_id: Optional[int], auto_match: bool):
    """Import a Vista CSV extract."""
    rows = _read_csv(file_path)
    meta = BatchMeta(tenant_id=tenant_id, file_name=file_path.name, imported_by=actor_id)
    try:
        batch = _service().import_rows(entity_type, rows, meta, auto_match=auto_match)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(serialize_batch(batch))


@recon_cli.command("history")
@tenant_option
@click.option("--limit", type=int, default=None, help="Number of batches to show.")
def history_command(tenant_id: int, limit: Optional[int]):
    """Show recent import batches."""
    _emit(_service().history(tenant_id, limit))


@recon_cli.command("list")
@entity_argument
@tenant_option
@click.option("--status", "link_status", default=None, help="Filter by link status.")
@click.option("--search", default=None, help="Case-insensitive search on key and name fields.")
@click.option("--limit", type=int, default=None)
def list_command(entity_type: str, tenant_id: int, link_status: Optional[str], search: Optional[str], limit: Optional[int]):
    """List imported records."""
    descriptor = get_descriptor(entity_type)
    try:
        records = _service().list_records(entity_type, tenant_id, link_status, search, limit)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit([descriptor.serialize(record) for record in records])


# Matching -----------------------------------------------------------------


@recon_cli.command("auto-match")
@click.argument("entity_types", nargs=-1)
@tenant_option
def auto_match_command(entity_types: tuple[str, ...], tenant_id: int):
    """Run the structural auto-matcher (all types when none are given)."""
    service = _service()
    keys = entity_types or tuple(ENTITY_DESCRIPTORS)
    results = {}
    try:
        for key in keys:
            summary = service.auto_match(key, tenant_id)
            results[summary.entity_type] = summary.to_dict()
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(results)


@recon_cli.command("duplicates")
@entity_argument
@tenant_option
@click.option("--min-similarity", type=float, default=None, help="Lowest score kept (0..1).")
def duplicates_command(entity_type: str, tenant_id: int, min_similarity: Optional[float]):
    """Show fuzzy duplicate candidates for unmatched records."""
    try:
        groups = _service().find_duplicates(entity_type, tenant_id, min_similarity)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit([group.to_dict() for group in groups])


@recon_cli.command("duplicate-stats")
@tenant_option
def duplicate_stats_command(tenant_id: int):
    """Count duplicate candidates per confidence tier."""
    _emit(_service().duplicate_stats(tenant_id))


@recon_cli.command("auto-link-exact")
@entity_argument
@tenant_option
@actor_option
@click.option("--threshold", type=float, default=None, help="Minimum score treated as exact.")
def auto_link_exact_command(entity_type: str, tenant_id: int, actor_id: Optional[int], threshold: Optional[float]):
    """Link records whose best candidate is an exact name match."""
    try:
        result = _service().auto_link_exact(entity_type, tenant_id, actor_id, threshold)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(result)


# Link state ---------------------------------------------------------------


@recon_cli.command("link")
@entity_argument
@click.argument("record_id", type=int)
@click.argument("canonical_id", type=int)
@tenant_option
@actor_option
@click.option("--confidence", type=float, default=1.0, show_default=True)
@click.option("--extra", "extra", multiple=True, help="Secondary link as KIND=ID, e.g. department=4.")
def link_command(
    entity_type: str,
    record_id: int,
    canonical_id: int,
    tenant_id: int,
    actor_id: Optional[int],
    confidence: float,
    extra: tuple[str, ...],
):
    """Manually link a record to a canonical entity."""
    descriptor = get_descriptor(entity_type)
    try:
        record = _service().link(
            entity_type,
            record_id,
            canonical_id,
            tenant_id,
            actor_id,
            confidence=confidence,
            extra_links=_parse_extra_links(extra),
        )
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(descriptor.serialize(record))


@recon_cli.command("unlink")
@entity_argument
@click.argument("record_id", type=int)
@tenant_option
def unlink_command(entity_type: str, record_id: int, tenant_id: int):
    """Clear every link on a record."""
    descriptor = get_descriptor(entity_type)
    try:
        record = _service().unlink(entity_type, record_id, tenant_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(descriptor.serialize(record))


@recon_cli.command("ignore")
@entity_argument
@click.argument("record_id", type=int)
@tenant_option
def ignore_command(entity_type: str, record_id: int, tenant_id: int):
    """Exclude a record from matching passes."""
    descriptor = get_descriptor(entity_type)
    try:
        record = _service().ignore(entity_type, record_id, tenant_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(descriptor.serialize(record))


@recon_cli.command("promote")
@entity_argument
@tenant_option
@actor_option
def promote_command(entity_type: str, tenant_id: int, actor_id: Optional[int]):
    """Create canonical entities for every record with no primary link."""
    try:
        summary = _service().promote_unmatched(entity_type, tenant_id, actor_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(summary.to_dict())


# Departments --------------------------------------------------------------


@recon_cli.command("department-duplicates")
@tenant_option
@click.option("--min-similarity", type=float, default=None)
def department_duplicates_command(tenant_id: int, min_similarity: Optional[float]):
    """Show candidate departments for unlinked department codes."""
    try:
        groups = _service().find_department_duplicates(tenant_id, min_similarity)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit([group.to_dict() for group in groups])


@recon_cli.command("link-department")
@click.argument("code")
@click.argument("department_id", type=int)
@tenant_option
@actor_option
def link_department_command(code: str, department_id: int, tenant_id: int, actor_id: Optional[int]):
    """Link every contract and work order carrying CODE to a department."""
    try:
        result = _service().link_department_code(code, department_id, tenant_id, actor_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(result)


@recon_cli.command("auto-link-departments")
@tenant_option
@actor_option
def auto_link_departments_command(tenant_id: int, actor_id: Optional[int]):
    """Link department codes that equal a department number."""
    try:
        result = _service().auto_link_departments(tenant_id, actor_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(result)


@recon_cli.command("promote-departments")
@tenant_option
def promote_departments_command(tenant_id: int):
    """Create departments for codes with no canonical department."""
    try:
        result = _service().promote_department_codes(tenant_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(result)


# Reporting ----------------------------------------------------------------


@recon_cli.command("stats")
@tenant_option
def stats_command(tenant_id: int):
    """Show reconciliation progress per entity type."""
    _emit(_service().stats(tenant_id).to_dict())


@recon_cli.command("canonical-only")
@entity_argument
@tenant_option
def canonical_only_command(entity_type: str, tenant_id: int):
    """List canonical entities no record of ENTITY_TYPE links to."""
    _emit(_service().canonical_only(entity_type, tenant_id))


@recon_cli.command("linked-records")
@entity_argument
@click.argument("link_kind")
@click.argument("canonical_id", type=int)
@tenant_option
def linked_records_command(entity_type: str, link_kind: str, canonical_id: int, tenant_id: int):
    """List records of ENTITY_TYPE that reference a canonical entity."""
    try:
        result = _service().records_for_canonical(entity_type, link_kind, canonical_id, tenant_id)
    except ReconciliationError as exc:
        raise _fail(exc) from exc
    _emit(result)


# Worker -------------------------------------------------------------------


@recon_cli.group("worker")
def worker_group():
    """Manage the reconciliation background worker."""


def _resolve_celery():
    celery_app = get_celery_app(current_app._get_current_object())
    if celery_app is None:
        raise click.ClickException("Reconciliation Celery app is unavailable. Ensure RECON_ENABLED=true.")
    return celery_app


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list.")
def worker_run(loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    celery_app = _resolve_celery()
    if not current_app.config.get("RECON_WORKER_ENABLED"):
        click.echo("Warning: RECON_WORKER_ENABLED is false.", err=True)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting reconciliation worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("beat")
@click.option("--loglevel", default="info", show_default=True)
def worker_beat(loglevel: str):
    """Start the Celery beat scheduler for periodic auto-match passes."""
    celery_app = _resolve_celery()
    schedule = celery_app.conf.beat_schedule or {}
    if not schedule:
        raise click.ClickException("No tenants scheduled. Set RECON_SCHEDULED_TENANTS to enable periodic auto-match.")

    click.echo(f"Starting reconciliation beat ({len(schedule)} scheduled tenant(s), loglevel: {loglevel})")
    try:
        celery_app.start(argv=["beat", "--loglevel", loglevel])
    except KeyboardInterrupt:
        click.echo("Beat shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
def worker_ping(timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    celery_app = _resolve_celery()
    task = celery_app.tasks.get("reconciliation.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'reconciliation.healthcheck' is not registered.")
    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    _emit(payload)


@worker_group.command("schedule-auto-match")
@tenant_option
@click.argument("entity_types", nargs=-1)
def schedule_auto_match(tenant_id: int, entity_types: tuple[str, ...]):
    """Queue an auto-match run on the worker."""
    celery_app = _resolve_celery()
    task = celery_app.tasks[AUTO_MATCH_TASK]
    result = task.apply_async(kwargs={"tenant_id": tenant_id, "entity_types": list(entity_types) or None})
    _emit({"task_id": result.id, "tenant_id": tenant_id})


__all__ = ["get_disabled_recon_group", "recon_cli"]
