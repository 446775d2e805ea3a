"""Exceptions raised by the reconciliation services."""

from __future__ import annotations

from typing import Any, Mapping, Sequence


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""


class ValidationError(ReconciliationError):
    """Raised when input rows or arguments cannot be used."""

    def __init__(self, message: str, errors: Sequence[Mapping[str, Any]] | None = None):
        super().__init__(message)
        self.errors: list[Mapping[str, Any]] = list(errors or [])


class NotFoundError(ReconciliationError):
    """Raised when an external record or canonical target is missing for the tenant."""

    def __init__(self, kind: str, identifier: Any):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(ReconciliationError):
    """Raised when a canonical entity is already claimed by another external record."""

    def __init__(
        self,
        *,
        entity_type: str,
        canonical_id: int,
        holder_id: int,
        holder_key: str | None,
        holder_name: str | None,
    ):
        label = entity_type.replace("_", " ")
        message = f"Already linked to Vista {label} #{holder_key}"
        if holder_name:
            message = f"{message} ({holder_name})"
        super().__init__(message)
        self.entity_type = entity_type
        self.canonical_id = canonical_id
        self.holder_id = holder_id
        self.holder_key = holder_key
        self.holder_name = holder_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "entity_type": self.entity_type,
            "canonical_id": self.canonical_id,
            "holder_id": self.holder_id,
            "holder_key": self.holder_key,
            "holder_name": self.holder_name,
        }


class TransactionFailure(ReconciliationError):
    """Raised when a multi-row operation fails and its transaction was rolled back."""

    def __init__(self, operation: str, entity_type: str | None = None):
        target = f" for {entity_type}" if entity_type else ""
        super().__init__(f"{operation}{target} failed and was rolled back")
        self.operation = operation
        self.entity_type = entity_type


__all__ = [
    "ConflictError",
    "NotFoundError",
    "ReconciliationError",
    "TransactionFailure",
    "ValidationError",
]
