# Overview: Typed error taxonomy shared by services and routes.

from __future__ import annotations


class PharmacyError(Exception):
    """Base class for domain errors. Carries a message and structured details."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(PharmacyError, ValueError):
    """400-level input problem. Caller's fault, not retried."""


class NotFoundError(PharmacyError, LookupError):
    """Referenced record no longer exists."""

    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(PharmacyError):
    """
    Requested quantity exceeds available stock.

    `available` is the quantity observed at the moment of the check; callers
    may retry with an adjusted quantity.
    """

    status_code = 409

    def __init__(
        self,
        *,
        medicine_id: int,
        requested: int,
        available: int,
        name: str | None = None,
    ):
        label = name or f"medicine {medicine_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, only {available} available",
            details={
                "medicine_id": medicine_id,
                "name": name,
                "requested_quantity": requested,
                "available": available,
            },
        )
        self.medicine_id = medicine_id
        self.requested = requested
        self.available = available


class EmptyCartError(PharmacyError):
    """Raised when checking out a cart with no lines."""


class PartialCommitError(PharmacyError):
    """
    The sale was appended to the journal but one or more stock deductions
    did not go through. `failed` rows were rejected by the ledger and need
    manual reconciliation; `pending` rows were not applied because the
    database kept refusing the write, and resume_commit() can finish them.
    """

    status_code = 500

    def __init__(self, sale_id: int, failed: list[dict], pending: list[dict] | None = None):
        pending = pending or []
        message = f"Sale {sale_id} recorded but {len(failed)} stock deduction(s) failed"
        if pending:
            message += f" and {len(pending)} left pending"
        super().__init__(
            message,
            details={"sale_id": sale_id, "failed": failed, "pending": pending},
        )
        self.sale_id = sale_id
        self.failed = failed
        self.pending = pending


class JournalImmutableError(PharmacyError):
    """Attempted update or delete of a sales journal row."""

    status_code = 409
