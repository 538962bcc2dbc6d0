"""
Domain error taxonomy for the stock ledger and sale composer.

Services raise these; the action boundary (posledger.actions) converts them
into ActionResult objects so routes and CLI commands never see exceptions
for expected business failures.

status_code mirrors the HTTP status the failure is reported with:
- 400 ValidationError
- 403 PermissionDeniedError
- 404 NotFoundError (and its per-entity subclasses)
- 409 InsufficientStockError, InvalidStateTransitionError
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for expected business failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LedgerError, ValueError):
    """Malformed or inconsistent input (amount mismatch, bad quantity, ...)."""
    status_code = 400


class PermissionDeniedError(LedgerError):
    """Acting user lacks the role the operation requires."""
    status_code = 403

    def __init__(self, required_role: str, message: str | None = None):
        super().__init__(
            message or f"Permission denied: {required_role} role required",
            details={"required_role": required_role},
        )
        self.required_role = required_role


class NotFoundError(LedgerError):
    """
    Referenced entity is missing.

    Entities belonging to another organization are reported exactly like
    missing ones so tenant boundaries never leak existence.
    """
    status_code = 404

    def __init__(self, entity: str, entity_id=None, message: str | None = None):
        if message is None:
            message = f"{entity} not found"
        super().__init__(message, details={"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id=None):
        super().__init__("Product", product_id)


class MovementNotFoundError(NotFoundError):
    """Movement does not exist, belongs to another tenant, or was already reversed."""

    def __init__(self, movement_id=None, message: str | None = None):
        super().__init__("Stock movement", movement_id, message=message)


class InsufficientStockError(LedgerError):
    status_code = 409

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str | None,
        available: int,
        requested: int,
    ):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InvalidStateTransitionError(LedgerError):
    status_code = 409

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        super().__init__(
            message or f"Cannot change sale status from {from_status} to {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class TenantAccessError(Exception):
    """Raised when the tenant context is missing or does not check out."""
    pass
