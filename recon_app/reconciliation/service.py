"""
Facade over the reconciliation services.

The CLI and the worker tasks talk to :class:`ReconciliationService` only; it
wires one session and one matching profile through every component.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from flask import current_app
from sqlalchemy.orm import Session

from config.matching import DEFAULT_PROFILE, MatchingProfile
from recon_app.models import ImportBatch, LinkStatus, db

from .auto_match import AutoMatcher, AutoMatchSummary
from .batch_service import BatchMeta, ImportBatchService
from .departments import DepartmentCodeGroup, DepartmentReconciler
from .duplicates import DuplicateFinder, DuplicateGroup
from .link_service import LinkStateManager
from .lookups import ExactLinker, canonical_only, records_for_canonical
from .promotion import PromotionImporter, PromotionSummary
from .record_store import ExternalRecordStore
from .stats import ReconciliationStats, StatsCollector


class ReconciliationService:
    """Entry point for every reconciliation operation of one tenant-aware session."""

    def __init__(self, session: Session | None = None, profile: MatchingProfile | None = None):
        self.session = session or db.session
        self.profile = profile or DEFAULT_PROFILE
        self.records = ExternalRecordStore(self.session)
        self.batches = ImportBatchService(self.session)
        self.links = LinkStateManager(self.session)

    @classmethod
    def from_app(cls, app=None) -> "ReconciliationService":
        """Build a service bound to the profile loaded for ``app``."""

        app = app or current_app
        state = app.extensions.get("reconciliation") or {}
        return cls(db.session, state.get("profile"))

    # Imports ---------------------------------------------------------------

    def import_rows(
        self,
        entity_type: str,
        rows: Iterable[Mapping[str, Any]],
        batch_meta: BatchMeta | Mapping[str, Any],
        *,
        auto_match: bool = False,
    ) -> ImportBatch:
        """
        Import one Vista extract and optionally run the auto-matcher after it.

        The batch records how many of its own rows the pass linked.
        """

        batch = self.records.import_rows(entity_type, rows, batch_meta)
        if auto_match:
            pending = self.batches.unmatched_record_ids(batch)
            self.auto_match(entity_type, batch.tenant_id)
            self.batches.record_auto_matched(batch, pending)
            self.session.commit()
        return batch

    def history(self, tenant_id: int, limit: int | None = None) -> list[dict[str, Any]]:
        if limit is None:
            limit = current_app.config.get("RECON_HISTORY_LIMIT", 20)
        return self.batches.history(tenant_id, limit)

    def list_records(
        self,
        entity_type: str,
        tenant_id: int,
        link_status: LinkStatus | str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list:
        return self.records.list_records(entity_type, tenant_id, link_status=link_status, search=search, limit=limit)

    # Matching --------------------------------------------------------------

    def auto_match(self, entity_type: str, tenant_id: int) -> AutoMatchSummary:
        return AutoMatcher(self.session).run(entity_type, tenant_id)

    def find_duplicates(
        self,
        entity_type: str,
        tenant_id: int,
        min_similarity: float | None = None,
    ) -> list[DuplicateGroup]:
        return DuplicateFinder(self.session, self.profile).find(entity_type, tenant_id, min_similarity)

    def duplicate_stats(self, tenant_id: int, entity_types: Sequence[str] | None = None) -> dict[str, dict[str, int]]:
        return DuplicateFinder(self.session, self.profile).stats(tenant_id, entity_types)

    def auto_link_exact(
        self,
        entity_type: str,
        tenant_id: int,
        actor_id: int | None,
        threshold: float | None = None,
    ) -> dict[str, Any]:
        return ExactLinker(self.session, self.profile).run(entity_type, tenant_id, actor_id, threshold)

    # Link state ------------------------------------------------------------

    def link(
        self,
        entity_type: str,
        record_id: int,
        canonical_id: int,
        tenant_id: int,
        actor_id: int | None,
        confidence: float = 1.0,
        extra_links: Mapping[str, int | None] | None = None,
    ):
        return self.links.link(
            entity_type,
            record_id,
            canonical_id,
            tenant_id,
            actor_id,
            confidence=confidence,
            extra_links=extra_links,
        )

    def unlink(self, entity_type: str, record_id: int, tenant_id: int):
        return self.links.unlink(entity_type, record_id, tenant_id)

    def ignore(self, entity_type: str, record_id: int, tenant_id: int):
        return self.links.ignore(entity_type, record_id, tenant_id)

    # Promotion -------------------------------------------------------------

    def promote_unmatched(self, entity_type: str, tenant_id: int, actor_id: int | None) -> PromotionSummary:
        return PromotionImporter(self.session).promote_unmatched(entity_type, tenant_id, actor_id)

    # Departments -----------------------------------------------------------

    def find_department_duplicates(
        self,
        tenant_id: int,
        min_similarity: float | None = None,
    ) -> list[DepartmentCodeGroup]:
        return DepartmentReconciler(self.session, self.profile).find_duplicates(tenant_id, min_similarity)

    def link_department_code(self, code: str, department_id: int, tenant_id: int, actor_id: int | None):
        return DepartmentReconciler(self.session, self.profile).link_code(code, department_id, tenant_id, actor_id)

    def auto_link_departments(self, tenant_id: int, actor_id: int | None) -> dict[str, Any]:
        return DepartmentReconciler(self.session, self.profile).auto_link_exact(tenant_id, actor_id)

    def promote_department_codes(self, tenant_id: int) -> dict[str, Any]:
        return DepartmentReconciler(self.session, self.profile).promote_codes(tenant_id)

    # Reporting -------------------------------------------------------------

    def stats(self, tenant_id: int) -> ReconciliationStats:
        return StatsCollector(self.session).collect(tenant_id)

    def canonical_only(self, entity_type: str, tenant_id: int) -> list[dict[str, Any]]:
        return canonical_only(self.session, entity_type, tenant_id)

    def records_for_canonical(
        self,
        entity_type: str,
        link_kind: str,
        canonical_id: int,
        tenant_id: int,
    ) -> dict[str, Any]:
        return records_for_canonical(self.session, entity_type, link_kind, canonical_id, tenant_id)


__all__ = ["ReconciliationService"]
