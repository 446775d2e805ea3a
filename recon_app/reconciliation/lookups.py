"""
Cross-references between canonical entities and imported Vista records.

Also hosts the exact-name bulk linker, which confirms duplicate candidates
that score a perfect match without an operator in the loop.
"""

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.matching import DEFAULT_PROFILE, MatchingProfile
from recon_app.models import LinkStatus, VistaEntityType, db
from recon_app.models.base import utcnow

from . import metrics
from .descriptors import get_descriptor
from .duplicates import DuplicateFinder
from .errors import TransactionFailure, ValidationError
from .link_service import claimed_targets, require_canonical
from .record_store import ExternalRecordStore

EXACT_LINK_TYPES = (VistaEntityType.EMPLOYEE, VistaEntityType.CUSTOMER, VistaEntityType.VENDOR)
_AMOUNT_FIELDS = ("contract_amount", "backlog")


def canonical_only(session: Session, entity_type: str, tenant_id: int) -> list[dict[str, Any]]:
    """Canonical entities no record of ``entity_type`` links to as its primary target."""

    descriptor = get_descriptor(entity_type)
    canonical = descriptor.primary_link.canonical
    claimed = claimed_targets(session, descriptor, tenant_id)
    stmt = select(canonical.model).where(canonical.model.tenant_id == tenant_id).order_by(canonical.model.id)
    return [
        {"id": entity.id, "code": canonical.code(entity), "name": canonical.display(entity)}
        for entity in session.scalars(stmt)
        if entity.id not in claimed
    ]


def records_for_canonical(
    session: Session,
    entity_type: str,
    link_kind: str,
    canonical_id: int,
    tenant_id: int,
) -> dict[str, Any]:
    """
    Vista records of a type that reference one canonical entity.

    Job records (contracts, work orders) also report contract amount and
    backlog totals across the matches.
    """

    descriptor = get_descriptor(entity_type)
    target = descriptor.link(link_kind)
    require_canonical(session, target, canonical_id, tenant_id)

    model = descriptor.model
    stmt = (
        select(model)
        .where(model.tenant_id == tenant_id, getattr(model, target.column) == canonical_id)
        .order_by(getattr(model, descriptor.natural_key))
    )
    records = list(session.scalars(stmt))
    payload: dict[str, Any] = {
        "entity_type": descriptor.key,
        "link_kind": target.kind,
        "canonical_id": canonical_id,
        "count": len(records),
        "records": [descriptor.serialize(record) for record in records],
    }
    if all(hasattr(model, name) for name in _AMOUNT_FIELDS):
        payload["totals"] = {
            name: sum(getattr(record, name) or 0.0 for record in records) for name in _AMOUNT_FIELDS
        }
    return payload


class ExactLinker:
    """
    Link records to their best duplicate candidate at or above a threshold.

    The profile default only accepts exact name matches; a lower threshold
    links every top candidate and stores its score as the confidence.
    """

    def __init__(self, session: Session | None = None, profile: MatchingProfile | None = None):
        self.session = session or db.session
        self.profile = profile or DEFAULT_PROFILE

    def run(
        self,
        entity_type: str,
        tenant_id: int,
        actor_id: int | None,
        threshold: float | None = None,
    ) -> dict[str, Any]:
        descriptor = get_descriptor(entity_type)
        if descriptor.entity_type not in EXACT_LINK_TYPES:
            raise ValidationError(f"Exact auto-link is not available for {descriptor.label} records")
        threshold = self.profile.exact_link_threshold if threshold is None else float(threshold)
        if not 0.0 < threshold <= 1.0:
            raise ValidationError("threshold must be between 0 and 1")

        primary = descriptor.primary_link
        store = ExternalRecordStore(self.session)
        results = []
        try:
            groups = DuplicateFinder(self.session, self.profile).find(descriptor.key, tenant_id, threshold)
            claimed = claimed_targets(self.session, descriptor)
            now = utcnow()
            for group in groups:
                best = group.candidates[0]
                if best.canonical_id in claimed:
                    continue
                record = store.get_record(descriptor, group.record_id, tenant_id)
                setattr(record, primary.column, best.canonical_id)
                record.link_status = LinkStatus.AUTO_MATCHED
                record.link_confidence = best.similarity
                record.linked_by = actor_id
                record.linked_at = now
                claimed.add(best.canonical_id)
                results.append(
                    {
                        "record_id": record.id,
                        "natural_key": group.natural_key,
                        "canonical_id": best.canonical_id,
                        "canonical_name": best.canonical_name,
                        "similarity": best.similarity,
                    }
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransactionFailure("Exact auto-link", descriptor.key) from exc

        for _ in results:
            metrics.record_link_transition(descriptor.key, "auto_link")
        current_app.logger.info(
            "Exact auto-link linked %s of %s Vista %s candidates",
            len(results),
            len(groups),
            descriptor.label,
        )
        return {"entity_type": descriptor.key, "linked": len(results), "total": len(groups), "results": results}


__all__ = ["EXACT_LINK_TYPES", "ExactLinker", "canonical_only", "records_for_canonical"]
