"""Vista import models."""

from .schema import (
    MATCHED_STATUSES,
    ExternalRecordMixin,
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
    "MATCHED_STATUSES",
    "ExternalRecordMixin",
    "ImportBatch",
    "LinkStatus",
    "VistaContract",
    "VistaCustomer",
    "VistaEmployee",
    "VistaEntityType",
    "VistaVendor",
    "VistaWorkOrder",
]
