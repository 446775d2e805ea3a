"""
Link state transitions for imported Vista records.

State machine::

    unmatched     --(auto-match)--> auto_matched
    unmatched     --(link)-------> manual_matched
    auto_matched  --(link)-------> manual_matched
    auto/manual   --(unlink)-----> unmatched
    any           --(ignore)-----> ignored

A canonical entity may be the primary link target of at most one record of a
type. The check runs against a locked row inside the writing transaction and
the unique constraint on the primary link column backs it up; a violation
surfaces as :class:`ConflictError` with both rows left unchanged.
"""

from __future__ import annotations

from typing import Any, Mapping

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recon_app.models import LinkStatus, db
from recon_app.models.base import utcnow

from . import metrics
from .descriptors import EntityDescriptor, LinkTarget, get_descriptor
from .errors import ConflictError, NotFoundError, ReconciliationError, ValidationError
from .record_store import ExternalRecordStore


def claimed_targets(session: Session, descriptor: EntityDescriptor, tenant_id: int | None = None) -> set[int]:
    """Canonical ids already held by the primary link column of ``descriptor``."""

    model = descriptor.model
    column = getattr(model, descriptor.primary_link.column)
    stmt = select(column).where(column.is_not(None))
    if tenant_id is not None:
        stmt = stmt.where(model.tenant_id == tenant_id)
    return set(session.scalars(stmt))


def require_canonical(session: Session, target: LinkTarget, canonical_id: int, tenant_id: int):
    """Load a canonical entity, raising NotFoundError outside the tenant."""

    canonical = target.canonical
    entity = session.get(canonical.model, canonical_id)
    if entity is None or entity.tenant_id != tenant_id:
        raise NotFoundError(canonical.name.title(), canonical_id)
    return entity


class LinkStateManager:
    """Apply link, unlink and ignore transitions one record at a time."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session
        self.store = ExternalRecordStore(self.session)

    def find_holder(self, descriptor: EntityDescriptor, canonical_id: int, *, exclude_id: int | None = None):
        model = descriptor.model
        column = getattr(model, descriptor.primary_link.column)
        stmt = select(model).where(column == canonical_id)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        return self.session.scalars(stmt.with_for_update()).first()

    def _conflict(self, descriptor: EntityDescriptor, canonical_id: int, holder) -> ConflictError:
        metrics.record_link_conflict(descriptor.key)
        current_app.logger.warning(
            "%s %s is already linked to Vista %s %s",
            descriptor.primary_link.kind.title(),
            canonical_id,
            descriptor.label,
            descriptor.natural_key_of(holder),
        )
        return ConflictError(
            entity_type=descriptor.key,
            canonical_id=canonical_id,
            holder_id=holder.id,
            holder_key=descriptor.natural_key_of(holder),
            holder_name=descriptor.display_name(holder),
        )

    def link(
        self,
        entity_type: str,
        record_id: int,
        canonical_id: int,
        tenant_id: int,
        actor_id: int | None,
        *,
        confidence: float = 1.0,
        extra_links: Mapping[str, int | None] | None = None,
    ):
        """
        Link a record to a canonical entity as a manual match.

        ``extra_links`` may set secondary references (for example the
        department of a contract) in the same write.

        Raises:
            NotFoundError: The record or a canonical target does not exist.
            ConflictError: Another record of the type already holds the target.
        """

        descriptor = get_descriptor(entity_type)
        if confidence is None or not 0.0 <= float(confidence) <= 1.0:
            raise ValidationError("confidence must be between 0 and 1")

        try:
            record = self.store.get_record(descriptor, record_id, tenant_id, for_update=True)
            primary = descriptor.primary_link
            require_canonical(self.session, primary, canonical_id, tenant_id)

            holder = self.find_holder(descriptor, canonical_id, exclude_id=record.id)
            if holder is not None:
                raise self._conflict(descriptor, canonical_id, holder)

            updates: dict[str, Any] = {primary.column: canonical_id}
            for kind, target_id in (extra_links or {}).items():
                target = descriptor.link(kind)
                if target.primary:
                    raise ValidationError(f"{kind} is the primary link; pass it as canonical_id")
                if target_id is not None:
                    require_canonical(self.session, target, target_id, tenant_id)
                updates[target.column] = target_id

            unchanged = (
                record.link_status == LinkStatus.MANUAL_MATCHED
                and record.link_confidence == float(confidence)
                and all(getattr(record, column) == value for column, value in updates.items())
            )
            if unchanged:
                self.session.commit()
                return record

            for column, value in updates.items():
                setattr(record, column, value)
            record.link_status = LinkStatus.MANUAL_MATCHED
            record.link_confidence = float(confidence)
            record.linked_by = actor_id
            record.linked_at = utcnow()
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            holder = self.find_holder(descriptor, canonical_id, exclude_id=record_id)
            self.session.rollback()
            if holder is None:
                raise
            raise self._conflict(descriptor, canonical_id, holder) from exc
        except ReconciliationError:
            self.session.rollback()
            raise

        metrics.record_link_transition(descriptor.key, "link")
        current_app.logger.info(
            "Linked Vista %s %s to %s %s",
            descriptor.label,
            descriptor.natural_key_of(record),
            primary.kind,
            canonical_id,
        )
        return record

    def unlink(self, entity_type: str, record_id: int, tenant_id: int):
        """Clear every link on a record. Unlinking an unmatched record is a no-op."""

        descriptor = get_descriptor(entity_type)
        try:
            record = self.store.get_record(descriptor, record_id, tenant_id, for_update=True)
        except ReconciliationError:
            self.session.rollback()
            raise
        if record.link_status == LinkStatus.UNMATCHED and not descriptor.has_link(record):
            self.session.commit()
            return record

        for column in descriptor.link_columns:
            setattr(record, column, None)
        record.link_status = LinkStatus.UNMATCHED
        record.link_confidence = None
        record.linked_by = None
        record.linked_at = None
        self.session.commit()
        metrics.record_link_transition(descriptor.key, "unlink")
        current_app.logger.info("Unlinked Vista %s %s", descriptor.label, descriptor.natural_key_of(record))
        return record

    def ignore(self, entity_type: str, record_id: int, tenant_id: int):
        """Exclude a record from future auto-match and duplicate passes."""

        descriptor = get_descriptor(entity_type)
        try:
            record = self.store.get_record(descriptor, record_id, tenant_id, for_update=True)
        except ReconciliationError:
            self.session.rollback()
            raise
        if record.link_status != LinkStatus.IGNORED:
            record.link_status = LinkStatus.IGNORED
            self.session.commit()
            metrics.record_link_transition(descriptor.key, "ignore")
            current_app.logger.info("Ignored Vista %s %s", descriptor.label, descriptor.natural_key_of(record))
        else:
            self.session.commit()
        return record


__all__ = ["LinkStateManager", "claimed_targets", "require_canonical"]
