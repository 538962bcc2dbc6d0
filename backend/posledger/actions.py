# Overview: Result-returning entry points over the services; expected failures never raise past here.

"""
Action boundary.

Every action runs one service operation for a TenantContext and returns an
ActionResult instead of raising:

- success: status 200/201, data holds the serialized entity
- LedgerError: session rolled back, WARNING logged, status is the error's
  status_code (400/403/404/409) and message/details describe the failure
- anything else: session rolled back, traceback logged, status 500

Routes turn an ActionResult into a JSON response; CLI commands print it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import wraps
from typing import Any

from flask import current_app

from .errors import LedgerError
from .extensions import db
from .services import product_service, sales_service, stock_ledger_service, stock_summary_service
from .services.stock_ledger_service import normalize_pagination
from .services.tenant_service import TenantContext


@dataclass
class ActionResult:
    status: int
    data: Any = None
    message: str | None = None
    error: str | None = None
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> dict:
        if self.ok:
            body = {"status": self.status, "data": self.data}
            if self.message:
                body["message"] = self.message
            return body
        body = {"status": self.status, "error": self.error, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def to_response(self):
        return self.to_dict(), self.status

    @classmethod
    def from_error(cls, err: LedgerError) -> "ActionResult":
        return cls(
            status=err.status_code,
            message=err.message,
            error=type(err).__name__,
            details=err.details,
        )


def action(success_status: int = 200):
    """Wrap a service call so its outcome is always an ActionResult."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs) -> ActionResult:
            try:
                data = func(*args, **kwargs)
            except LedgerError as e:
                db.session.rollback()
                current_app.logger.warning(
                    "%s rejected (%s): %s", func.__name__, type(e).__name__, e.message
                )
                return ActionResult.from_error(e)
            except Exception:
                db.session.rollback()
                current_app.logger.exception("%s failed", func.__name__)
                return ActionResult(status=500, message="Internal server error", error="InternalError")
            return ActionResult(status=success_status, data=data)

        return wrapper
    return decorator


def _page(rows, total: int, page: int, limit: int) -> dict:
    return {
        "items": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------

@action(success_status=201)
def append(
    ctx: TenantContext,
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    reference: str | None = None,
    store_id: int | None = None,
):
    movement = stock_ledger_service.append_movement(
        ctx,
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        reason=reason,
        reference=reference,
        store_id=store_id,
    )
    return movement.to_dict()


@action()
def reverse(ctx: TenantContext, movement_id: int):
    return stock_ledger_service.reverse_movement(ctx, movement_id).to_dict()


@action()
def get_movement(ctx: TenantContext, movement_id: int):
    return stock_ledger_service.get_movement(ctx, movement_id).to_dict()


@action()
def list_movements(ctx: TenantContext, *, page: int = 1, limit: int | None = None, **filters):
    page, limit = normalize_pagination(page, limit)
    rows, total = stock_ledger_service.list_movements(ctx, page=page, limit=limit, **filters)
    return _page(rows, total, page, limit)


@action()
def update_movement_notes(ctx: TenantContext, movement_id: int, *, reason=None, reference=None):
    movement = stock_ledger_service.update_movement_notes(
        ctx, movement_id, reason=reason, reference=reference
    )
    return movement.to_dict()


# ---------------------------------------------------------------------------
# Stock summary
# ---------------------------------------------------------------------------

@action()
def summarize(ctx: TenantContext, product_id: int, date_from=None, date_to=None):
    return stock_summary_service.summarize(ctx, product_id, date_from, date_to).to_dict()


@action()
def find_stock_drift(ctx: TenantContext):
    return stock_summary_service.find_stock_drift(ctx)


@action()
def get_stock_alerts(ctx: TenantContext, limit: int = 50):
    return stock_summary_service.get_stock_alerts(ctx, limit=limit)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@action(success_status=201)
def create_product(ctx: TenantContext, **fields):
    return product_service.create_product(ctx, **fields).to_dict()


@action()
def get_product(ctx: TenantContext, product_id: int):
    return product_service.get_product(ctx, product_id).to_dict()


@action()
def list_products(ctx: TenantContext, *, page: int = 1, limit: int | None = None, **filters):
    page, limit = normalize_pagination(page, limit)
    rows, total = product_service.list_products(ctx, page=page, limit=limit, **filters)
    return _page(rows, total, page, limit)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

@action(success_status=201)
def create_sale(
    ctx: TenantContext,
    header: sales_service.SaleHeaderInput,
    items: list[sales_service.SaleItemInput],
    payments: list[sales_service.SalePaymentInput] | None = None,
):
    sale = sales_service.create_sale(ctx, header, items, payments)
    return sale.to_dict(include_lines=True)


@action()
def cancel_sale(ctx: TenantContext, sale_id: int, reason: str):
    return sales_service.cancel_sale(ctx, sale_id, reason).to_dict(include_lines=True)


@action()
def update_sale_status(ctx: TenantContext, sale_id: int, status: str):
    return sales_service.update_sale_status(ctx, sale_id, status).to_dict()


@action(success_status=201)
def add_sale_payment(ctx: TenantContext, sale_id: int, payment: sales_service.SalePaymentInput):
    row = sales_service.add_sale_payment(ctx, sale_id, payment)
    return {"payment": row.to_dict(), "sale": row.sale.to_dict()}


@action()
def mark_overdue_sales(ctx: TenantContext, as_of=None):
    return {"updated": sales_service.mark_overdue_sales(ctx, as_of)}


@action()
def get_sale(ctx: TenantContext, sale_id: int):
    return sales_service.get_sale(ctx, sale_id).to_dict(include_lines=True)


@action()
def list_sales(ctx: TenantContext, *, page: int = 1, limit: int | None = None, **filters):
    page, limit = normalize_pagination(page, limit)
    rows, total = sales_service.list_sales(ctx, page=page, limit=limit, **filters)
    return _page(rows, total, page, limit)
