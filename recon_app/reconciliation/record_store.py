"""
Upsert and lookup of imported Vista records.

Rows are written with the store's insert-or-update primitive keyed on
``(tenant_id, natural key)``. The update branch replaces descriptive fields and
provenance only; link columns, link status and confidence never appear in the
update set, so a re-import cannot sever an established link.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recon_app.models import ImportBatch, LinkStatus, db
from recon_app.models.base import utcnow

from . import metrics
from .batch_service import BatchCounts, BatchMeta, ImportBatchService, summarize_errors
from .descriptors import EntityDescriptor, coerce_field, get_descriptor
from .errors import NotFoundError, ReconciliationError, ValidationError

logger = logging.getLogger(__name__)

_INSERT_BUILDERS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass
class UpsertResult:
    record: Any
    is_new: bool


def prepare_row(descriptor: EntityDescriptor, row: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """
    Validate a raw row and coerce its descriptive fields.

    Returns the normalized natural key and a mapping holding every descriptive
    field of the type; fields absent from the row are ``None``.
    """

    if not isinstance(row, Mapping):
        raise ValidationError(f"{descriptor.label} row must be a mapping of fields")
    raw_key = row.get(descriptor.natural_key)
    natural_key = str(raw_key).strip() if raw_key is not None else ""
    if not natural_key:
        raise ValidationError(f"{descriptor.label} row is missing {descriptor.natural_key}")

    fields: dict[str, Any] = {}
    problems: list[dict[str, Any]] = []
    for name, kind in descriptor.fields.items():
        try:
            fields[name] = coerce_field(kind, row.get(name), name)
        except ValidationError as exc:
            problems.append({"field": name, "error": str(exc)})
    if problems:
        raise ValidationError(
            f"{descriptor.label} {natural_key} has invalid values: "
            + ", ".join(problem["field"] for problem in problems),
            problems,
        )
    return natural_key, fields


def _raw_payload(row: Mapping[str, Any]) -> dict[str, Any]:
    payload = row.get("raw_data")
    if isinstance(payload, Mapping):
        return dict(payload)
    payload = {}
    for key, value in row.items():
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        payload[str(key)] = value
    return payload


class ExternalRecordStore:
    """Write and read imported Vista records for one session."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        entity_type: str | EntityDescriptor,
        tenant_id: int,
        row: Mapping[str, Any],
        batch_id: int | None,
    ) -> UpsertResult:
        """
        Insert a new record or refresh an existing one, preserving its links.

        Raises:
            ValidationError: When the row lacks its natural key or carries
                values that cannot be coerced.
        """

        descriptor = entity_type if isinstance(entity_type, EntityDescriptor) else get_descriptor(entity_type)
        natural_key, fields = prepare_row(descriptor, row)
        return self._write(descriptor, tenant_id, natural_key, fields, _raw_payload(row), batch_id)

    def _write(
        self,
        descriptor: EntityDescriptor,
        tenant_id: int,
        natural_key: str,
        fields: Mapping[str, Any],
        raw_data: Mapping[str, Any],
        batch_id: int | None,
    ) -> UpsertResult:
        model = descriptor.model
        table = model.__table__
        dialect = self.session.get_bind().dialect.name
        builder = _INSERT_BUILDERS.get(dialect)
        if builder is None:
            raise ReconciliationError(f"Insert-or-update is not available on the {dialect} dialect")

        now = utcnow()
        stmt = builder(model).values(
            tenant_id=tenant_id,
            link_status=LinkStatus.UNMATCHED,
            import_batch_id=batch_id,
            imported_at=now,
            import_count=1,
            raw_data=dict(raw_data),
            created_at=now,
            updated_at=now,
            **{descriptor.natural_key: natural_key},
            **fields,
        )
        refreshed = {name: stmt.excluded[name] for name in descriptor.fields}
        refreshed.update(
            raw_data=stmt.excluded.raw_data,
            import_batch_id=stmt.excluded.import_batch_id,
            imported_at=stmt.excluded.imported_at,
            updated_at=stmt.excluded.updated_at,
            import_count=table.c.import_count + 1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", descriptor.natural_key],
            set_=refreshed,
        ).returning(table.c.id, table.c.import_count)

        record_id, import_count = self.session.execute(stmt).one()
        record = self.session.get(model, record_id, populate_existing=True)
        return UpsertResult(record=record, is_new=import_count == 1)

    def import_rows(
        self,
        entity_type: str,
        rows: Iterable[Mapping[str, Any]],
        meta: BatchMeta | Mapping[str, Any],
    ) -> ImportBatch:
        """
        Upsert every row under a new import batch and commit.

        Rows that fail validation or hit a store error are skipped and recorded
        in the batch error summary; the remaining rows still land.
        """

        descriptor = get_descriptor(entity_type)
        batches = ImportBatchService(self.session)
        batch = batches.open_batch(descriptor.entity_type, meta)
        counts = BatchCounts()

        for index, row in enumerate(rows, start=1):
            counts.total += 1
            natural_key = row.get(descriptor.natural_key) if isinstance(row, Mapping) else None
            try:
                key, fields = prepare_row(descriptor, row)
                with self.session.begin_nested():
                    result = self._write(descriptor, batch.tenant_id, key, fields, _raw_payload(row), batch.id)
            except ValidationError as exc:
                self._reject(descriptor, counts, index, natural_key, str(exc), exc.errors)
                continue
            except SQLAlchemyError as exc:
                self._reject(descriptor, counts, index, natural_key, str(getattr(exc, "orig", None) or exc), [])
                continue

            if result.is_new:
                counts.new += 1
                metrics.record_import_row(descriptor.key, "new")
            else:
                counts.updated += 1
                metrics.record_import_row(descriptor.key, "updated")

        batches.complete_batch(batch, counts)
        self.session.commit()
        current_app.logger.info(
            "Vista %s import %s finished: %s total, %s new, %s updated, %s skipped (%s)",
            descriptor.label,
            batch.id,
            counts.total,
            counts.new,
            counts.updated,
            counts.skipped,
            summarize_errors(counts.errors),
        )
        return batch

    def _reject(
        self,
        descriptor: EntityDescriptor,
        counts: BatchCounts,
        index: int,
        natural_key: Any,
        message: str,
        details: list,
    ) -> None:
        counts.skipped += 1
        entry: dict[str, Any] = {
            "row": index,
            "natural_key": None if natural_key is None else str(natural_key),
            "error": message,
        }
        if details:
            entry["details"] = [dict(detail) for detail in details]
        counts.errors.append(entry)
        metrics.record_import_row(descriptor.key, "skipped")
        logger.warning("Skipping %s row %s: %s", descriptor.label, index, message)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(
        self,
        descriptor: EntityDescriptor,
        record_id: int,
        tenant_id: int,
        *,
        for_update: bool = False,
    ):
        model = descriptor.model
        stmt = select(model).where(model.id == record_id, model.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        record = self.session.scalars(stmt).first()
        if record is None:
            raise NotFoundError(f"Vista {descriptor.label}", record_id)
        return record

    def list_records(
        self,
        entity_type: str,
        tenant_id: int,
        *,
        link_status: LinkStatus | str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list:
        """Records of a type ordered by natural key, optionally filtered."""

        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        stmt = select(model).where(model.tenant_id == tenant_id)
        if link_status is not None:
            try:
                status = LinkStatus(link_status)
            except ValueError as exc:
                raise ValidationError(f"Unknown link status {link_status!r}") from exc
            stmt = stmt.where(model.link_status == status)
        if search:
            term = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    *(
                        func.lower(getattr(model, name)).like(pattern, escape="\\")
                        for name in descriptor.search_fields
                    )
                )
            )
        stmt = stmt.order_by(getattr(model, descriptor.natural_key))
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))


__all__ = ["ExternalRecordStore", "UpsertResult", "prepare_row"]
