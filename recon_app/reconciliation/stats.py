"""Reconciliation progress counts, computed fresh from committed state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from recon_app.models import Department, LinkStatus, db

from .batch_service import ImportBatchService
from .departments import JOB_MODELS
from .descriptors import ENTITY_DESCRIPTORS, EntityDescriptor


@dataclass
class EntityStats:
    entity_type: str
    total: int = 0
    unmatched: int = 0
    auto_matched: int = 0
    manual_matched: int = 0
    ignored: int = 0
    canonical_total: int = 0
    canonical_linked: int = 0
    # None for types whose extract carries no active flag
    active: int | None = None
    last_import: datetime | None = None

    @property
    def matched(self) -> int:
        return self.auto_matched + self.manual_matched

    @property
    def canonical_unlinked(self) -> int:
        return self.canonical_total - self.canonical_linked

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "total": self.total,
            "unmatched": self.unmatched,
            "matched": self.matched,
            "auto_matched": self.auto_matched,
            "manual_matched": self.manual_matched,
            "ignored": self.ignored,
            "active": self.active,
            "canonical_total": self.canonical_total,
            "canonical_linked": self.canonical_linked,
            "canonical_unlinked": self.canonical_unlinked,
            "last_import": self.last_import.isoformat() if self.last_import else None,
        }


@dataclass
class DepartmentStats:
    """Department code coverage across contracts and work orders."""

    codes: int = 0
    unlinked_codes: int = 0
    linked_departments: int = 0
    canonical_total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationStats:
    tenant_id: int
    entities: dict[str, EntityStats] = field(default_factory=dict)
    departments: DepartmentStats = field(default_factory=DepartmentStats)

    def __getitem__(self, entity_type: str) -> EntityStats:
        return self.entities[entity_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "entities": {key: item.to_dict() for key, item in self.entities.items()},
            "departments": self.departments.to_dict(),
        }


class StatsCollector:
    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def entity_stats(self, descriptor: EntityDescriptor, tenant_id: int) -> EntityStats:
        model = descriptor.model
        result = EntityStats(entity_type=descriptor.key)

        by_status = select(model.link_status, func.count(model.id)).where(model.tenant_id == tenant_id).group_by(
            model.link_status
        )
        for status, count in self.session.execute(by_status):
            setattr(result, LinkStatus(status).value, count)
            result.total += count

        canonical_model = descriptor.primary_link.canonical.model
        result.canonical_total = self.session.scalar(
            select(func.count(canonical_model.id)).where(canonical_model.tenant_id == tenant_id)
        ) or 0

        primary = getattr(model, descriptor.primary_link.column)
        result.canonical_linked = self.session.scalar(
            select(func.count(func.distinct(primary))).where(model.tenant_id == tenant_id, primary.is_not(None))
        ) or 0

        if hasattr(model, "active"):
            result.active = self.session.scalar(
                select(func.count(model.id)).where(model.tenant_id == tenant_id, model.active.is_(True))
            ) or 0
        return result

    def department_stats(self, tenant_id: int) -> DepartmentStats:
        codes: set[str] = set()
        unlinked: set[str] = set()
        linked: set[int] = set()
        for _, model in JOB_MODELS:
            stmt = select(model.department_code, model.linked_department_id).where(
                model.tenant_id == tenant_id,
                model.department_code.is_not(None),
                model.department_code != "",
            )
            for code, department_id in self.session.execute(stmt.distinct()):
                codes.add(code)
                if department_id is None:
                    unlinked.add(code)
                else:
                    linked.add(department_id)
        canonical_total = self.session.scalar(
            select(func.count(Department.id)).where(Department.tenant_id == tenant_id)
        ) or 0
        return DepartmentStats(
            codes=len(codes),
            unlinked_codes=len(unlinked),
            linked_departments=len(linked),
            canonical_total=canonical_total,
        )

    def collect(self, tenant_id: int) -> ReconciliationStats:
        last_imports = ImportBatchService(self.session).last_import_times(tenant_id)
        stats = ReconciliationStats(tenant_id=tenant_id)
        for key, descriptor in ENTITY_DESCRIPTORS.items():
            entity = self.entity_stats(descriptor, tenant_id)
            entity.last_import = last_imports.get(key)
            stats.entities[key] = entity
        stats.departments = self.department_stats(tenant_id)
        return stats


__all__ = ["DepartmentStats", "EntityStats", "ReconciliationStats", "StatsCollector"]
