"""
Import batch bookkeeping.

A batch is opened before the first row of a Vista file is written and its
counts are patched once the run completes. Batches are otherwise immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from recon_app.models import ImportBatch, LinkStatus, User, VistaEntityType, db
from recon_app.models.base import utcnow

from .descriptors import get_descriptor
from .errors import ValidationError


@dataclass(frozen=True)
class BatchMeta:
    """Caller-supplied identity of an import run."""

    tenant_id: int
    file_name: str
    imported_by: int | None = None


@dataclass
class BatchCounts:
    total: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    auto_matched: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class ImportBatchService:
    """Create, complete and list Vista import batches."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def open_batch(self, entity_type: VistaEntityType, meta: BatchMeta | Mapping[str, Any]) -> ImportBatch:
        meta = _coerce_meta(meta)
        batch = ImportBatch(
            tenant_id=meta.tenant_id,
            file_name=meta.file_name,
            file_type=entity_type,
            imported_by=meta.imported_by,
            imported_at=utcnow(),
        )
        self.session.add(batch)
        self.session.flush()
        return batch

    def complete_batch(self, batch: ImportBatch, counts: BatchCounts) -> ImportBatch:
        """Patch the final counts onto ``batch``; the caller owns the commit."""

        if batch.completed_at is not None:
            raise ValidationError(f"Import batch {batch.id} is already complete")
        batch.records_total = counts.total
        batch.records_new = counts.new
        batch.records_updated = counts.updated
        batch.records_skipped = counts.skipped
        batch.records_auto_matched = counts.auto_matched
        batch.error_summary = list(counts.errors) or None
        batch.completed_at = utcnow()
        return batch

    def unmatched_record_ids(self, batch: ImportBatch) -> set[int]:
        model = get_descriptor(batch.file_type.value).model
        stmt = select(model.id).where(model.import_batch_id == batch.id, model.link_status == LinkStatus.UNMATCHED)
        return set(self.session.scalars(stmt))

    def record_auto_matched(self, batch: ImportBatch, pending_ids: set[int]) -> ImportBatch:
        """Count how many of this batch's previously unmatched rows the auto-matcher linked."""

        model = get_descriptor(batch.file_type.value).model
        matched = 0
        if pending_ids:
            matched = self.session.scalar(
                select(func.count(model.id)).where(
                    model.id.in_(pending_ids),
                    model.import_batch_id == batch.id,
                    model.link_status == LinkStatus.AUTO_MATCHED,
                )
            ) or 0
        batch.records_auto_matched = matched
        return batch

    def history(self, tenant_id: int, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent batches for the tenant, newest first, with importer names."""

        stmt = (
            select(ImportBatch)
            .options(joinedload(ImportBatch.importer))
            .where(ImportBatch.tenant_id == tenant_id)
            .order_by(ImportBatch.imported_at.desc(), ImportBatch.id.desc())
            .limit(limit)
        )
        return [serialize_batch(batch) for batch in self.session.scalars(stmt)]

    def last_import_times(self, tenant_id: int) -> dict[str, datetime | None]:
        stmt = (
            select(ImportBatch.file_type, func.max(ImportBatch.imported_at))
            .where(ImportBatch.tenant_id == tenant_id)
            .group_by(ImportBatch.file_type)
        )
        latest: dict[str, datetime | None] = {entity.value: None for entity in VistaEntityType}
        for file_type, imported_at in self.session.execute(stmt):
            latest[file_type.value] = imported_at
        return latest


def _coerce_meta(meta: BatchMeta | Mapping[str, Any]) -> BatchMeta:
    if isinstance(meta, BatchMeta):
        return meta
    try:
        tenant_id = int(meta["tenant_id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError("Batch metadata requires a tenant_id") from exc
    file_name = str(meta.get("file_name") or "").strip()
    if not file_name:
        raise ValidationError("Batch metadata requires a file_name")
    imported_by = meta.get("imported_by")
    return BatchMeta(
        tenant_id=tenant_id,
        file_name=file_name,
        imported_by=int(imported_by) if imported_by is not None else None,
    )


def serialize_batch(batch: ImportBatch) -> dict[str, Any]:
    importer: User | None = batch.importer
    return {
        "id": batch.id,
        "file_name": batch.file_name,
        "file_type": batch.file_type.value,
        "records_total": batch.records_total,
        "records_new": batch.records_new,
        "records_updated": batch.records_updated,
        "records_skipped": batch.records_skipped,
        "records_auto_matched": batch.records_auto_matched,
        "imported_by": batch.imported_by,
        "imported_by_name": importer.display_name if importer else None,
        "imported_at": batch.imported_at.isoformat() if batch.imported_at else None,
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
        "errors": list(batch.error_summary or []),
    }


def summarize_errors(errors: Sequence[Mapping[str, Any]], limit: int = 5) -> str:
    """Compact one-line description of row rejections for logs and CLI output."""

    if not errors:
        return "no rejected rows"
    shown = "; ".join(f"row {item.get('row')}: {item.get('error')}" for item in errors[:limit])
    remaining = len(errors) - limit
    if remaining > 0:
        shown = f"{shown}; +{remaining} more"
    return shown


__all__ = ["BatchCounts", "BatchMeta", "ImportBatchService", "serialize_batch", "summarize_errors"]
