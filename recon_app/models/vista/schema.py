"""
SQLAlchemy models for imported Vista records.

Each Vista extract type lands in its own table keyed by the Vista natural key
within a tenant. Link columns point at canonical entities and are written only
by the reconciliation services; plain re-imports never touch them.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from ..base import BaseModel, db, utcnow


class VistaEntityType(str, enum.Enum):
    """Extract types delivered by Vista."""

    CONTRACT = "contract"
    WORK_ORDER = "work_order"
    EMPLOYEE = "employee"
    CUSTOMER = "customer"
    VENDOR = "vendor"


class LinkStatus(str, enum.Enum):
    """Reconciliation state of an imported record."""

    UNMATCHED = "unmatched"
    AUTO_MATCHED = "auto_matched"
    MANUAL_MATCHED = "manual_matched"
    IGNORED = "ignored"


MATCHED_STATUSES = (LinkStatus.AUTO_MATCHED, LinkStatus.MANUAL_MATCHED)


class ImportBatch(BaseModel):
    """Metadata describing one Vista file ingestion."""

    __tablename__ = "vista_import_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    file_type: Mapped[VistaEntityType] = mapped_column(
        Enum(VistaEntityType, name="vista_entity_type_enum"),
        nullable=False,
        index=True,
    )
    records_total: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_new: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_auto_matched: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    imported_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    error_summary: Mapped[list | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Per-row rejections: [{row, natural_key, error}]",
    )

    importer = relationship("User", foreign_keys=[imported_by])

    __table_args__ = (
        Index("idx_vista_batches_tenant_type_time", "tenant_id", "file_type", "imported_at"),
        CheckConstraint("records_total >= 0", name="ck_vista_batches_total_nonnegative"),
    )

    def __repr__(self):
        return f"<ImportBatch {self.id} {self.file_type} total={self.records_total}>"


class ExternalRecordMixin:
    """Columns shared by every imported Vista record."""

    id: Mapped[int] = mapped_column(primary_key=True)
    link_status: Mapped[LinkStatus] = mapped_column(
        Enum(LinkStatus, name="vista_link_status_enum"),
        nullable=False,
        default=LinkStatus.UNMATCHED,
        index=True,
    )
    link_confidence: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    linked_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    import_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=1)
    raw_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    @declared_attr
    def tenant_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    @declared_attr
    def linked_by(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("users.id"), nullable=True)

    @declared_attr
    def import_batch_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("vista_import_batches.id"), nullable=True, index=True)

    @declared_attr
    def import_batch(cls):
        return relationship("ImportBatch")


class VistaContract(ExternalRecordMixin, BaseModel):
    __tablename__ = "vista_contracts"

    contract_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(db.String(500))
    status: Mapped[str | None] = mapped_column(db.String(50))
    employee_number: Mapped[str | None] = mapped_column(db.String(50))
    project_manager_name: Mapped[str | None] = mapped_column(db.String(200))
    department_code: Mapped[str | None] = mapped_column(db.String(50))
    orig_contract_amount: Mapped[float | None] = mapped_column(db.Float)
    contract_amount: Mapped[float | None] = mapped_column(db.Float)
    billed_amount: Mapped[float | None] = mapped_column(db.Float)
    received_amount: Mapped[float | None] = mapped_column(db.Float)
    backlog: Mapped[float | None] = mapped_column(db.Float)
    projected_revenue: Mapped[float | None] = mapped_column(db.Float)
    gross_profit_percent: Mapped[float | None] = mapped_column(db.Float)
    earned_revenue: Mapped[float | None] = mapped_column(db.Float)
    actual_cost: Mapped[float | None] = mapped_column(db.Float)
    projected_cost: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    total_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    total_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    customer_number: Mapped[str | None] = mapped_column(db.String(50))
    customer_name: Mapped[str | None] = mapped_column(db.String(255))
    ship_city: Mapped[str | None] = mapped_column(db.String(100))
    ship_state: Mapped[str | None] = mapped_column(db.String(50))
    ship_zip: Mapped[str | None] = mapped_column(db.String(20))
    primary_market: Mapped[str | None] = mapped_column(db.String(100))
    negotiated_work: Mapped[str | None] = mapped_column(db.String(50))
    delivery_method: Mapped[str | None] = mapped_column(db.String(100))

    linked_project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True)
    linked_employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    linked_customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id"), nullable=True)
    linked_department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "contract_number", name="uq_vista_contracts_tenant_number"),
        UniqueConstraint("linked_project_id", name="uq_vista_contracts_project"),
        Index("idx_vista_contracts_tenant_status", "tenant_id", "link_status"),
    )

    def __repr__(self):
        return f"<VistaContract {self.contract_number} {self.link_status}>"


class VistaWorkOrder(ExternalRecordMixin, BaseModel):
    __tablename__ = "vista_work_orders"

    work_order_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(db.String(500))
    entered_date: Mapped[date | None] = mapped_column(db.Date)
    requested_date: Mapped[date | None] = mapped_column(db.Date)
    status: Mapped[str | None] = mapped_column(db.String(50))
    employee_number: Mapped[str | None] = mapped_column(db.String(50))
    project_manager_name: Mapped[str | None] = mapped_column(db.String(200))
    department_code: Mapped[str | None] = mapped_column(db.String(50))
    negotiated_work: Mapped[str | None] = mapped_column(db.String(50))
    contract_amount: Mapped[float | None] = mapped_column(db.Float)
    actual_cost: Mapped[float | None] = mapped_column(db.Float)
    billed_amount: Mapped[float | None] = mapped_column(db.Float)
    received_amount: Mapped[float | None] = mapped_column(db.Float)
    backlog: Mapped[float | None] = mapped_column(db.Float)
    gross_profit_percent: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    mep_jtd: Mapped[float | None] = mapped_column(db.Float)
    material_jtd: Mapped[float | None] = mapped_column(db.Float)
    subcontracts_jtd: Mapped[float | None] = mapped_column(db.Float)
    rentals_jtd: Mapped[float | None] = mapped_column(db.Float)
    customer_name: Mapped[str | None] = mapped_column(db.String(255))
    city: Mapped[str | None] = mapped_column(db.String(100))
    state: Mapped[str | None] = mapped_column(db.String(50))
    zip: Mapped[str | None] = mapped_column(db.String(20))
    primary_market: Mapped[str | None] = mapped_column(db.String(100))

    linked_project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True)
    linked_employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    linked_customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id"), nullable=True)
    linked_department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "work_order_number", name="uq_vista_work_orders_tenant_number"),
        UniqueConstraint("linked_project_id", name="uq_vista_work_orders_project"),
        Index("idx_vista_work_orders_tenant_status", "tenant_id", "link_status"),
    )

    def __repr__(self):
        return f"<VistaWorkOrder {self.work_order_number} {self.link_status}>"


class VistaEmployee(ExternalRecordMixin, BaseModel):
    __tablename__ = "vista_employees"

    employee_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    first_name: Mapped[str | None] = mapped_column(db.String(100))
    last_name: Mapped[str | None] = mapped_column(db.String(100))
    hire_date: Mapped[date | None] = mapped_column(db.Date)
    active: Mapped[bool | None] = mapped_column(db.Boolean)

    linked_employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_number", name="uq_vista_employees_tenant_number"),
        UniqueConstraint("linked_employee_id", name="uq_vista_employees_employee"),
        Index("idx_vista_employees_tenant_status", "tenant_id", "link_status"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self):
        return f"<VistaEmployee {self.employee_number} {self.link_status}>"


class VistaCustomer(ExternalRecordMixin, BaseModel):
    __tablename__ = "vista_customers"

    customer_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    name: Mapped[str | None] = mapped_column(db.String(255))
    address: Mapped[str | None] = mapped_column(db.String(255))
    address2: Mapped[str | None] = mapped_column(db.String(255))
    city: Mapped[str | None] = mapped_column(db.String(100))
    state: Mapped[str | None] = mapped_column(db.String(50))
    zip: Mapped[str | None] = mapped_column(db.String(20))
    active: Mapped[bool | None] = mapped_column(db.Boolean)

    linked_customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "customer_number", name="uq_vista_customers_tenant_number"),
        UniqueConstraint("linked_customer_id", name="uq_vista_customers_customer"),
        Index("idx_vista_customers_tenant_status", "tenant_id", "link_status"),
    )

    def __repr__(self):
        return f"<VistaCustomer {self.customer_number} {self.link_status}>"


class VistaVendor(ExternalRecordMixin, BaseModel):
    __tablename__ = "vista_vendors"

    vendor_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    name: Mapped[str | None] = mapped_column(db.String(255))
    address: Mapped[str | None] = mapped_column(db.String(255))
    address2: Mapped[str | None] = mapped_column(db.String(255))
    city: Mapped[str | None] = mapped_column(db.String(100))
    state: Mapped[str | None] = mapped_column(db.String(50))
    zip: Mapped[str | None] = mapped_column(db.String(20))
    active: Mapped[bool | None] = mapped_column(db.Boolean)

    linked_vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "vendor_number", name="uq_vista_vendors_tenant_number"),
        UniqueConstraint("linked_vendor_id", name="uq_vista_vendors_vendor"),
        Index("idx_vista_vendors_tenant_status", "tenant_id", "link_status"),
    )

    def __repr__(self):
        return f"<VistaVendor {self.vendor_number} {self.link_status}>"
