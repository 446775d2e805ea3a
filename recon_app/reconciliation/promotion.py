"""
Promotion of orphan Vista records into new canonical entities.

Each invocation handles one entity type in a single transaction: every
eligible record gets a freshly created canonical row and is linked back to it.
Any failure rolls back the whole invocation so numbering never ends up half
applied.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recon_app.models import (
    Customer,
    Employee,
    LinkStatus,
    Project,
    Vendor,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaVendor,
    VistaWorkOrder,
    db,
)
from recon_app.models.base import utcnow

from . import metrics
from .descriptors import EntityDescriptor, get_descriptor
from .errors import TransactionFailure

PROMOTABLE_STATUSES = (LinkStatus.UNMATCHED, LinkStatus.AUTO_MATCHED)
DEFAULT_EMAIL_DOMAIN = "vista.imported"


@dataclass
class PromotionSummary:
    entity_type: str
    imported: int = 0
    total: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _status_or_default(value: str | None, default: str = "Open") -> str:
    if value and value.strip():
        return value.strip()
    return default


class PromotionImporter:
    """Create canonical entities for Vista records with no primary link."""

    def __init__(self, session: Session | None = None, *, email_domain: str | None = None):
        self.session = session or db.session
        self.email_domain = email_domain
        self._manager_cache: dict[tuple[int, str], int | None] = {}

    def _placeholder_domain(self) -> str:
        if self.email_domain:
            return self.email_domain
        return current_app.config.get("RECON_PLACEHOLDER_EMAIL_DOMAIN") or DEFAULT_EMAIL_DOMAIN

    def _resolve_manager(self, record: VistaContract | VistaWorkOrder, tenant_id: int) -> int | None:
        if record.linked_employee_id is not None:
            return record.linked_employee_id
        number = (record.employee_number or "").strip()
        if not number:
            return None
        cache_key = (tenant_id, number)
        if cache_key not in self._manager_cache:
            stmt = (
                select(Employee.id)
                .where(Employee.tenant_id == tenant_id, Employee.employee_number == number)
                .order_by(Employee.id)
                .limit(1)
            )
            self._manager_cache[cache_key] = self.session.scalars(stmt).first()
        return self._manager_cache[cache_key]

    # One builder per entity type; each returns an unsaved canonical entity.

    def _build_contract(self, record: VistaContract, tenant_id: int, actor_id: int | None) -> Project:
        return Project(
            tenant_id=tenant_id,
            number=record.contract_number,
            name=record.description or record.contract_number or "Imported Contract",
            client=record.customer_name or "Unknown Client",
            status=_status_or_default(record.status),
            customer_id=record.linked_customer_id,
            manager_id=self._resolve_manager(record, tenant_id),
            department_id=record.linked_department_id,
        )

    def _build_work_order(self, record: VistaWorkOrder, tenant_id: int, actor_id: int | None) -> Project:
        return Project(
            tenant_id=tenant_id,
            number=f"WO-{record.work_order_number}",
            name=record.description or f"Work Order {record.work_order_number}",
            client=record.customer_name or "Unknown Client",
            status=_status_or_default(record.status),
            customer_id=record.linked_customer_id,
            manager_id=self._resolve_manager(record, tenant_id),
            department_id=record.linked_department_id,
        )

    def _build_employee(self, record: VistaEmployee, tenant_id: int, actor_id: int | None) -> Employee:
        return Employee(
            tenant_id=tenant_id,
            employee_number=record.employee_number,
            first_name=record.first_name or "",
            last_name=record.last_name or "",
            email=f"vp{record.employee_number}_{record.id}@{self._placeholder_domain()}",
            hire_date=record.hire_date,
            employment_status="active" if record.active else "inactive",
        )

    def _build_customer(self, record: VistaCustomer, tenant_id: int, actor_id: int | None) -> Customer:
        name = record.name or "Unknown"
        return Customer(
            tenant_id=tenant_id,
            customer_owner=name,
            customer_facility=name,
            address=record.address,
            city=record.city,
            state=record.state,
            zip_code=record.zip,
            active=record.active if record.active is not None else True,
        )

    def _build_vendor(self, record: VistaVendor, tenant_id: int, actor_id: int | None) -> Vendor:
        name = record.name or "Unknown"
        return Vendor(
            tenant_id=tenant_id,
            vendor_name=name,
            company_name=name,
            address_line1=record.address,
            address_line2=record.address2,
            city=record.city,
            state=record.state,
            zip_code=record.zip,
            status="active" if record.active is not False else "inactive",
            created_by=actor_id,
        )

    def _builder_for(self, descriptor: EntityDescriptor) -> Callable[[Any, int, int | None], Any]:
        return getattr(self, f"_build_{descriptor.key}")

    def eligible_records(self, descriptor: EntityDescriptor, tenant_id: int) -> list:
        model = descriptor.model
        primary = getattr(model, descriptor.primary_link.column)
        stmt = (
            select(model)
            .where(
                model.tenant_id == tenant_id,
                primary.is_(None),
                model.link_status.in_(PROMOTABLE_STATUSES),
            )
            .order_by(getattr(model, descriptor.natural_key))
        )
        return list(self.session.scalars(stmt))

    def promote_unmatched(self, entity_type: str, tenant_id: int, actor_id: int | None) -> PromotionSummary:
        """
        Promote every eligible record of a type and link it to its new entity.

        Eligible records have no primary link and are either unmatched or were
        auto-matched on secondary references only. Ignored and manually matched
        records are never promoted.

        Raises:
            TransactionFailure: Nothing from the invocation was persisted.
        """

        descriptor = get_descriptor(entity_type)
        build = self._builder_for(descriptor)
        primary = descriptor.primary_link
        canonical = primary.canonical
        summary = PromotionSummary(entity_type=descriptor.key)

        try:
            records = self.eligible_records(descriptor, tenant_id)
            summary.total = len(records)
            now = utcnow()
            for record in records:
                entity = build(record, tenant_id, actor_id)
                self.session.add(entity)
                self.session.flush()

                setattr(record, primary.column, entity.id)
                record.link_status = LinkStatus.MANUAL_MATCHED
                record.link_confidence = 1.0
                record.linked_by = actor_id
                record.linked_at = now
                summary.imported += 1
                summary.results.append(
                    {
                        "record_id": record.id,
                        "natural_key": descriptor.natural_key_of(record),
                        "canonical_id": entity.id,
                        "name": canonical.display(entity),
                    }
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.error("Promotion of Vista %s records rolled back: %s", descriptor.label, exc)
            raise TransactionFailure("Promotion", descriptor.key) from exc

        metrics.record_promotion(descriptor.key, summary.imported)
        current_app.logger.info(
            "Promoted %s of %s Vista %s records to new %s entities",
            summary.imported,
            summary.total,
            descriptor.label,
            canonical.name,
        )
        return summary


__all__ = ["PROMOTABLE_STATUSES", "PromotionImporter", "PromotionSummary"]
