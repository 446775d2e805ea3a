"""
Rule-based auto-matching of unmatched Vista records.

Only exact structural joins are attempted (employee number, department code,
customer owner name, contract number). Every rule that resolves contributes a
confidence of 1.0 and the stored confidence is the average of contributions.
Fuzzy similarity is not used here; it only feeds the human-reviewed
duplicate finder.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recon_app.models import LinkStatus, db
from recon_app.models.base import utcnow

from . import metrics
from .descriptors import EntityDescriptor, MatchRule, get_descriptor
from .errors import TransactionFailure
from .link_service import claimed_targets

RULE_CONFIDENCE = 1.0


@dataclass
class AutoMatchSummary:
    entity_type: str
    matched: int
    total: int

    def to_dict(self) -> dict:
        return asdict(self)


def _rule_key(value: object | None, case_insensitive: bool) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.lower() if case_insensitive else text


class AutoMatcher:
    """Resolve structural links for unmatched records in one transaction."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def _build_lookup(self, descriptor: EntityDescriptor, rule: MatchRule, tenant_id: int) -> dict[str, int]:
        model = descriptor.link(rule.link_kind).canonical.model
        column = getattr(model, rule.target_field)
        stmt = (
            select(column, model.id)
            .where(model.tenant_id == tenant_id, column.is_not(None))
            .order_by(model.id)
        )
        lookup: dict[str, int] = {}
        for value, canonical_id in self.session.execute(stmt):
            key = _rule_key(value, rule.case_insensitive)
            if key is not None:
                lookup.setdefault(key, canonical_id)
        return lookup

    def run(self, entity_type: str, tenant_id: int) -> AutoMatchSummary:
        """
        Attempt every rule of the type against each unmatched record.

        Records with at least one resolved rule become ``auto_matched``; the
        rest stay ``unmatched``. A primary target already held by another
        record (or claimed earlier in the same pass) does not count.

        Raises:
            TransactionFailure: The store failed; nothing from the pass persisted.
        """

        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        started = time.perf_counter()
        matched = 0
        total = 0

        try:
            records = list(
                self.session.scalars(
                    select(model)
                    .where(model.tenant_id == tenant_id, model.link_status == LinkStatus.UNMATCHED)
                    .order_by(model.id)
                )
            )
            total = len(records)
            lookups = {rule: self._build_lookup(descriptor, rule, tenant_id) for rule in descriptor.match_rules}
            claimed = claimed_targets(self.session, descriptor) if lookups else set()
            now = utcnow()

            for record in records:
                resolved: dict[str, int] = {}
                for rule, lookup in lookups.items():
                    key = _rule_key(getattr(record, rule.source_field), rule.case_insensitive)
                    target_id = lookup.get(key) if key is not None else None
                    if target_id is None:
                        continue
                    target = descriptor.link(rule.link_kind)
                    if target.primary and target_id in claimed:
                        continue
                    resolved[target.column] = target_id

                if not resolved:
                    continue

                contributions = [RULE_CONFIDENCE] * len(resolved)
                for column, target_id in resolved.items():
                    if getattr(record, column) is None:
                        setattr(record, column, target_id)
                primary_id = getattr(record, descriptor.primary_link.column)
                if primary_id is not None:
                    claimed.add(primary_id)
                record.link_status = LinkStatus.AUTO_MATCHED
                record.link_confidence = sum(contributions) / len(contributions)
                record.linked_at = now
                matched += 1

            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.error("Auto-match for %s rolled back: %s", descriptor.label, exc)
            raise TransactionFailure("Auto-match", descriptor.key) from exc

        metrics.record_auto_match(
            descriptor.key,
            matched=matched,
            total=total,
            duration_seconds=time.perf_counter() - started,
        )
        current_app.logger.info("Auto-matched %s of %s unmatched Vista %s records", matched, total, descriptor.label)
        return AutoMatchSummary(entity_type=descriptor.key, matched=matched, total=total)


__all__ = ["AutoMatchSummary", "AutoMatcher"]
