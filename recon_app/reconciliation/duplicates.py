"""
Fuzzy duplicate detection between unlinked Vista records and canonical rows.

Results are advisory: nothing is written. Each unmatched record is scored
against every canonical entity of its counterpart type that no record of the
same type has claimed yet, and the strongest candidates are returned for an
operator to confirm through the link service.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from config.matching import DEFAULT_PROFILE, MatchingProfile
from recon_app.models import LinkStatus, db

from .descriptors import ENTITY_DESCRIPTORS, EntityDescriptor, get_descriptor
from .errors import ValidationError
from .link_service import claimed_targets
from .similarity import exact_match, similarity


def round_score(score: float, precision: int = 2) -> float:
    """Round half up so 0.125 reports as 0.13."""

    factor = 10**precision
    return math.floor(score * factor + 0.5) / factor


@dataclass
class DuplicateCandidate:
    canonical_id: int
    canonical_code: str | None
    canonical_name: str | None
    similarity: float
    matched_on: str
    location_match: bool = False
    strong_match: bool = False
    exact_key_match: bool = False


@dataclass
class DuplicateGroup:
    record_id: int
    natural_key: str
    name: str | None
    candidates: list[DuplicateCandidate] = field(default_factory=list)

    @property
    def best_score(self) -> float:
        return self.candidates[0].similarity if self.candidates else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "natural_key": self.natural_key,
            "name": self.name,
            "best_score": self.best_score,
            "candidates": [asdict(candidate) for candidate in self.candidates],
        }


def score_candidate(
    descriptor: EntityDescriptor,
    record: Any,
    canonical: Any,
    profile: MatchingProfile = DEFAULT_PROFILE,
) -> DuplicateCandidate:
    """Score one record against one canonical entity."""

    rules = descriptor.duplicates
    if rules is None:
        raise ValidationError(f"{descriptor.label} records have no duplicate profile")

    best = 0.0
    matched_on = rules.name_pairs[0].label
    for pair in rules.name_pairs:
        score = similarity(pair.record_value(record), pair.canonical_value(canonical))
        if score > best:
            best, matched_on = score, pair.label

    location_match = False
    if rules.location_fields is not None:
        record_field, canonical_field = rules.location_fields
        location_match = exact_match(getattr(record, record_field), getattr(canonical, canonical_field))
        if location_match:
            best = min(1.0, best + profile.location_boost)

    strong_match = False
    if rules.strong_fields is not None:
        record_field, canonical_field = rules.strong_fields
        strong_match = exact_match(getattr(record, record_field), getattr(canonical, canonical_field))
        if strong_match:
            best = max(best, profile.strong_field_floor)

    exact_key_match = False
    if rules.exact_key is not None:
        record_key, canonical_field = rules.exact_key
        left = record_key(record)
        right = getattr(canonical, canonical_field)
        exact_key_match = bool(left and right and left.strip() == right.strip())
        if exact_key_match:
            best = profile.exact_key_score

    canonical_kind = descriptor.primary_link.canonical
    return DuplicateCandidate(
        canonical_id=canonical.id,
        canonical_code=canonical_kind.code(canonical),
        canonical_name=canonical_kind.display(canonical),
        similarity=round_score(best, profile.score_precision),
        matched_on=matched_on,
        location_match=location_match,
        strong_match=strong_match,
        exact_key_match=exact_key_match,
    )


def rank_candidates(
    candidates: Iterable[DuplicateCandidate],
    min_similarity: float,
    limit: int,
) -> list[DuplicateCandidate]:
    kept = [candidate for candidate in candidates if candidate.similarity >= min_similarity]
    kept.sort(key=lambda candidate: (-candidate.similarity, candidate.canonical_id))
    return kept[:limit]


class DuplicateFinder:
    """Propose ranked canonical candidates for unlinked Vista records."""

    def __init__(self, session: Session | None = None, profile: MatchingProfile | None = None):
        self.session = session or db.session
        self.profile = profile or DEFAULT_PROFILE

    def unlinked_records(self, descriptor: EntityDescriptor, tenant_id: int) -> list:
        model = descriptor.model
        primary = getattr(model, descriptor.primary_link.column)
        stmt = (
            select(model)
            .where(
                model.tenant_id == tenant_id,
                model.link_status == LinkStatus.UNMATCHED,
                primary.is_(None),
            )
            .order_by(getattr(model, descriptor.natural_key))
        )
        return list(self.session.scalars(stmt))

    def unclaimed_canonicals(self, descriptor: EntityDescriptor, tenant_id: int) -> list:
        canonical_model = descriptor.primary_link.canonical.model
        claimed = claimed_targets(self.session, descriptor)
        stmt = select(canonical_model).where(canonical_model.tenant_id == tenant_id).order_by(canonical_model.id)
        if descriptor.duplicates is not None:
            for relation in descriptor.duplicates.eager_load:
                stmt = stmt.options(selectinload(getattr(canonical_model, relation)))
        return [entity for entity in self.session.scalars(stmt) if entity.id not in claimed]

    def find(
        self,
        entity_type: str,
        tenant_id: int,
        min_similarity: float | None = None,
    ) -> list[DuplicateGroup]:
        """
        Ranked duplicate candidates for every unmatched record of a type.

        Each group holds at most ``max_candidates`` candidates scoring at least
        ``min_similarity``, best first. Groups are ordered by their best score.
        """

        descriptor = get_descriptor(entity_type)
        threshold = self.profile.default_min_similarity if min_similarity is None else float(min_similarity)
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("min_similarity must be between 0 and 1")

        canonicals = self.unclaimed_canonicals(descriptor, tenant_id)
        groups: list[DuplicateGroup] = []
        for record in self.unlinked_records(descriptor, tenant_id):
            scored = (score_candidate(descriptor, record, canonical, self.profile) for canonical in canonicals)
            candidates = rank_candidates(scored, threshold, self.profile.max_candidates)
            if not candidates:
                continue
            groups.append(
                DuplicateGroup(
                    record_id=record.id,
                    natural_key=descriptor.natural_key_of(record),
                    name=descriptor.display_name(record),
                    candidates=candidates,
                )
            )

        groups.sort(key=lambda group: (-group.best_score, group.natural_key))
        return groups

    def summarize(self, groups: Sequence[DuplicateGroup]) -> dict[str, int]:
        tiers = self.profile.tiers
        summary = {"total_unlinked": len(groups), "high": 0, "medium": 0, "low": 0}
        for group in groups:
            tier = tiers.classify(group.best_score)
            if tier is not None:
                summary[tier] += 1
        return summary

    def stats(self, tenant_id: int, entity_types: Sequence[str] | None = None) -> dict[str, dict[str, int]]:
        """Confidence tier counts of duplicate groups, per entity type."""

        keys = entity_types or [key for key, item in ENTITY_DESCRIPTORS.items() if item.duplicates is not None]
        return {
            get_descriptor(key).key: self.summarize(self.find(key, tenant_id, self.profile.tiers.low))
            for key in keys
        }


__all__ = [
    "DuplicateCandidate",
    "DuplicateFinder",
    "DuplicateGroup",
    "rank_candidates",
    "round_score",
    "score_candidate",
]
