"""
Per-type descriptors that parameterize the generic reconciliation engine.

Every Vista extract type is described once here: its natural key, the
descriptive fields an import may write, the canonical link columns it carries,
the structural rules the auto-matcher applies, and the name fields the
duplicate finder compares. The services never branch on entity type; they
read these descriptors instead.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Literal, Mapping

from recon_app.models import (
    Customer,
    Department,
    Employee,
    Project,
    Vendor,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaEntityType,
    VistaVendor,
    VistaWorkOrder,
)

from .errors import ValidationError

FieldKind = Literal["str", "float", "date", "bool"]

_TRUE_VALUES = {"1", "true", "yes", "y", "t", "active", "a"}
_FALSE_VALUES = {"0", "false", "no", "n", "f", "inactive", "i"}
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")
_NUMBER_NOISE = re.compile(r"[$,\s]")


def coerce_field(kind: FieldKind, value: Any, field_name: str) -> Any:
    """
    Convert a raw extract value into the column's Python type.

    Blank strings become ``None``. Values that cannot be converted raise
    :class:`ValidationError` so the import can reject the row.
    """

    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    if kind == "str":
        return str(value).strip() or None
    if kind == "float":
        if isinstance(value, bool):
            raise ValidationError(f"{field_name} must be numeric")
        if isinstance(value, (int, float)):
            return float(value)
        text = _NUMBER_NOISE.sub("", str(value))
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            number = float(text)
        except ValueError as exc:
            raise ValidationError(f"{field_name} must be numeric, got {value!r}") from exc
        return -number if negative else number
    if kind == "date":
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        text = str(value)
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(text).date()
        except ValueError as exc:
            raise ValidationError(f"{field_name} must be a date, got {value!r}") from exc
    if kind == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValidationError(f"{field_name} must be a yes/no flag, got {value!r}")
    raise ValueError(f"Unknown field kind {kind!r}")


# ---------------------------------------------------------------------------
# Canonical targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalKind:
    """A canonical table the engine can link to."""

    name: str
    model: type
    display: Callable[[Any], str | None]
    code: Callable[[Any], str | None]


CANONICAL_KINDS: Mapping[str, CanonicalKind] = {
    "project": CanonicalKind(
        "project",
        Project,
        display=lambda project: project.name,
        code=lambda project: project.number,
    ),
    "employee": CanonicalKind(
        "employee",
        Employee,
        display=lambda employee: employee.full_name,
        code=lambda employee: employee.employee_number,
    ),
    "customer": CanonicalKind(
        "customer",
        Customer,
        display=lambda customer: customer.customer_owner,
        code=lambda customer: customer.customer_facility,
    ),
    "vendor": CanonicalKind(
        "vendor",
        Vendor,
        display=lambda vendor: vendor.vendor_name,
        code=lambda vendor: vendor.company_name,
    ),
    "department": CanonicalKind(
        "department",
        Department,
        display=lambda department: department.name,
        code=lambda department: department.department_number,
    ),
}


@dataclass(frozen=True)
class LinkTarget:
    """
    A link column on an external record.

    The primary link is exclusive: at most one record of the type may hold a
    given canonical id. Secondary links are many-to-one references.
    """

    kind: str
    column: str
    primary: bool = False

    @property
    def canonical(self) -> CanonicalKind:
        return CANONICAL_KINDS[self.kind]


@dataclass(frozen=True)
class MatchRule:
    """Structural join from a record field to a canonical column."""

    source_field: str
    link_kind: str
    target_field: str
    case_insensitive: bool = False


@dataclass(frozen=True)
class NamePair:
    """Name-bearing values compared by the duplicate finder."""

    label: str
    record_value: Callable[[Any], str | None]
    canonical_value: Callable[[Any], str | None]


@dataclass(frozen=True)
class DuplicateProfile:
    """
    How one external type is scored against its canonical counterpart.

    Attributes:
        name_pairs: Compared with :func:`similarity`; the best pair wins.
        location_fields: ``(record attr, canonical attr)`` granting the
            location boost on an exact case-insensitive match.
        strong_fields: ``(record attr, canonical attr)`` raising the score to
            the strong-field floor on an exact case-insensitive match.
        exact_key: ``(record value getter, canonical attr)`` forcing the exact
            key score on an exact match.
        eager_load: Relationships loaded with the canonical rows.
    """

    name_pairs: tuple[NamePair, ...]
    location_fields: tuple[str, str] | None = None
    strong_fields: tuple[str, str] | None = None
    exact_key: tuple[Callable[[Any], str | None], str] | None = None
    eager_load: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntityDescriptor:
    """Everything the engine needs to reconcile one Vista extract type."""

    entity_type: VistaEntityType
    label: str
    model: type
    natural_key: str
    fields: Mapping[str, FieldKind]
    links: tuple[LinkTarget, ...]
    display_name: Callable[[Any], str | None]
    match_rules: tuple[MatchRule, ...] = ()
    duplicates: DuplicateProfile | None = None
    search_fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return self.entity_type.value

    @property
    def primary_link(self) -> LinkTarget:
        for target in self.links:
            if target.primary:
                return target
        raise LookupError(f"{self.key} has no primary link")

    def link(self, kind: str) -> LinkTarget:
        for target in self.links:
            if target.kind == kind:
                return target
        raise ValidationError(f"{self.label} records cannot link to {kind}")

    @property
    def link_columns(self) -> tuple[str, ...]:
        return tuple(target.column for target in self.links)

    def natural_key_of(self, record: Any) -> str:
        return getattr(record, self.natural_key)

    def has_link(self, record: Any) -> bool:
        return any(getattr(record, column) is not None for column in self.link_columns)

    def serialize(self, record: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": record.id,
            "entity_type": self.key,
            self.natural_key: self.natural_key_of(record),
            "name": self.display_name(record),
            "link_status": record.link_status.value,
            "link_confidence": record.link_confidence,
            "linked_by": record.linked_by,
            "linked_at": record.linked_at.isoformat() if record.linked_at else None,
            "import_batch_id": record.import_batch_id,
            "import_count": record.import_count,
        }
        for column in self.link_columns:
            payload[column] = getattr(record, column)
        return payload


def _project_customer(project: Project) -> str | None:
    if project.customer is not None:
        return project.customer.customer_owner
    return project.client


def _work_order_project_number(record: VistaWorkOrder) -> str | None:
    if not record.work_order_number:
        return None
    return f"WO-{record.work_order_number}"


_JOB_LINKS = (
    LinkTarget("project", "linked_project_id", primary=True),
    LinkTarget("employee", "linked_employee_id"),
    LinkTarget("customer", "linked_customer_id"),
    LinkTarget("department", "linked_department_id"),
)

_JOB_RULES = (
    MatchRule("employee_number", "employee", "employee_number"),
    MatchRule("department_code", "department", "department_number"),
    MatchRule("customer_name", "customer", "customer_owner", case_insensitive=True),
)

_JOB_NAME_PAIRS = (
    NamePair("description", lambda record: record.description, lambda project: project.name),
    NamePair("customer", lambda record: record.customer_name, _project_customer),
)

CONTRACT = EntityDescriptor(
    entity_type=VistaEntityType.CONTRACT,
    label="contract",
    model=VistaContract,
    natural_key="contract_number",
    fields={
        "description": "str",
        "status": "str",
        "employee_number": "str",
        "project_manager_name": "str",
        "department_code": "str",
        "orig_contract_amount": "float",
        "contract_amount": "float",
        "billed_amount": "float",
        "received_amount": "float",
        "backlog": "float",
        "projected_revenue": "float",
        "gross_profit_percent": "float",
        "earned_revenue": "float",
        "actual_cost": "float",
        "projected_cost": "float",
        "pf_hours_estimate": "float",
        "pf_hours_jtd": "float",
        "sm_hours_estimate": "float",
        "sm_hours_jtd": "float",
        "total_hours_estimate": "float",
        "total_hours_jtd": "float",
        "customer_number": "str",
        "customer_name": "str",
        "ship_city": "str",
        "ship_state": "str",
        "ship_zip": "str",
        "primary_market": "str",
        "negotiated_work": "str",
        "delivery_method": "str",
    },
    links=_JOB_LINKS,
    display_name=lambda record: record.description,
    match_rules=_JOB_RULES + (MatchRule("contract_number", "project", "number"),),
    duplicates=DuplicateProfile(
        name_pairs=_JOB_NAME_PAIRS,
        exact_key=(lambda record: record.contract_number, "number"),
        eager_load=("customer",),
    ),
    search_fields=("contract_number", "description", "customer_name"),
)

WORK_ORDER = EntityDescriptor(
    entity_type=VistaEntityType.WORK_ORDER,
    label="work order",
    model=VistaWorkOrder,
    natural_key="work_order_number",
    fields={
        "description": "str",
        "entered_date": "date",
        "requested_date": "date",
        "status": "str",
        "employee_number": "str",
        "project_manager_name": "str",
        "department_code": "str",
        "negotiated_work": "str",
        "contract_amount": "float",
        "actual_cost": "float",
        "billed_amount": "float",
        "received_amount": "float",
        "backlog": "float",
        "gross_profit_percent": "float",
        "pf_hours_jtd": "float",
        "sm_hours_jtd": "float",
        "mep_jtd": "float",
        "material_jtd": "float",
        "subcontracts_jtd": "float",
        "rentals_jtd": "float",
        "customer_name": "str",
        "city": "str",
        "state": "str",
        "zip": "str",
        "primary_market": "str",
    },
    links=_JOB_LINKS,
    display_name=lambda record: record.description,
    match_rules=_JOB_RULES,
    duplicates=DuplicateProfile(
        name_pairs=_JOB_NAME_PAIRS,
        exact_key=(_work_order_project_number, "number"),
        eager_load=("customer",),
    ),
    search_fields=("work_order_number", "description", "customer_name"),
)

EMPLOYEE = EntityDescriptor(
    entity_type=VistaEntityType.EMPLOYEE,
    label="employee",
    model=VistaEmployee,
    natural_key="employee_number",
    fields={
        "first_name": "str",
        "last_name": "str",
        "hire_date": "date",
        "active": "bool",
    },
    links=(LinkTarget("employee", "linked_employee_id", primary=True),),
    display_name=lambda record: record.full_name,
    match_rules=(MatchRule("employee_number", "employee", "employee_number"),),
    duplicates=DuplicateProfile(
        name_pairs=(
            NamePair("name", lambda record: record.full_name, lambda employee: employee.full_name),
        ),
        strong_fields=("last_name", "last_name"),
    ),
    search_fields=("employee_number", "first_name", "last_name"),
)

_PARTY_FIELDS: Mapping[str, FieldKind] = {
    "name": "str",
    "address": "str",
    "address2": "str",
    "city": "str",
    "state": "str",
    "zip": "str",
    "active": "bool",
}

CUSTOMER = EntityDescriptor(
    entity_type=VistaEntityType.CUSTOMER,
    label="customer",
    model=VistaCustomer,
    natural_key="customer_number",
    fields=_PARTY_FIELDS,
    links=(LinkTarget("customer", "linked_customer_id", primary=True),),
    display_name=lambda record: record.name,
    duplicates=DuplicateProfile(
        name_pairs=(
            NamePair("owner", lambda record: record.name, lambda customer: customer.customer_owner),
            NamePair("facility", lambda record: record.name, lambda customer: customer.customer_facility),
        ),
        location_fields=("city", "city"),
    ),
    search_fields=("customer_number", "name", "city"),
)

VENDOR = EntityDescriptor(
    entity_type=VistaEntityType.VENDOR,
    label="vendor",
    model=VistaVendor,
    natural_key="vendor_number",
    fields=_PARTY_FIELDS,
    links=(LinkTarget("vendor", "linked_vendor_id", primary=True),),
    display_name=lambda record: record.name,
    duplicates=DuplicateProfile(
        name_pairs=(
            NamePair("vendor_name", lambda record: record.name, lambda vendor: vendor.vendor_name),
            NamePair("company_name", lambda record: record.name, lambda vendor: vendor.company_name),
        ),
        location_fields=("city", "city"),
    ),
    search_fields=("vendor_number", "name", "city"),
)


ENTITY_DESCRIPTORS: Mapping[str, EntityDescriptor] = OrderedDict(
    (descriptor.key, descriptor) for descriptor in (CONTRACT, WORK_ORDER, EMPLOYEE, CUSTOMER, VENDOR)
)

_ALIASES = {
    "contracts": "contract",
    "work_orders": "work_order",
    "workorder": "work_order",
    "workorders": "work_order",
    "employees": "employee",
    "customers": "customer",
    "vendors": "vendor",
}


def get_descriptor(entity_type: str | VistaEntityType) -> EntityDescriptor:
    """Resolve an entity type name (or enum) to its descriptor."""

    if isinstance(entity_type, VistaEntityType):
        return ENTITY_DESCRIPTORS[entity_type.value]
    key = str(entity_type or "").strip().lower().replace("-", "_")
    key = _ALIASES.get(key, key)
    descriptor = ENTITY_DESCRIPTORS.get(key)
    if descriptor is None:
        raise ValidationError(
            f"Unknown entity type {entity_type!r}; expected one of {', '.join(ENTITY_DESCRIPTORS)}"
        )
    return descriptor


__all__ = [
    "CANONICAL_KINDS",
    "CanonicalKind",
    "DuplicateProfile",
    "ENTITY_DESCRIPTORS",
    "EntityDescriptor",
    "LinkTarget",
    "MatchRule",
    "NamePair",
    "coerce_field",
    "get_descriptor",
]
