# recon_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .canonical import Customer, Department, Employee, Project, Vendor
from .tenant import Tenant, User
from .vista import (
    ImportBatch,
    LinkStatus,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaEntityType,
    VistaVendor,
    VistaWorkOrder,
)

__all__ = [
    "db",
    "BaseModel",
    "Tenant",
    "User",
    # Canonical models
    "Customer",
    "Department",
    "Employee",
    "Project",
    "Vendor",
    # Vista import models
    "ImportBatch",
    "LinkStatus",
    "VistaContract",
    "VistaCustomer",
    "VistaEmployee",
    "VistaEntityType",
    "VistaVendor",
    "VistaWorkOrder",
]
