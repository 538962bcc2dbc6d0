"""
Sale Transaction Composer

Creates a sale header, its items, its payments and one stock OUT movement
per item as a single transaction, and undoes the stock effect when a sale
is cancelled. Stock is never touched directly here: every stock change goes
through the ledger's *_locked helpers so the ledger invariants hold for
sales exactly as for manual movements.

STATUS MACHINE:
- PENDING  -> PAID, OVERDUE, CANCELLED
- OVERDUE  -> PAID, CANCELLED
- PAID     -> CANCELLED
- CANCELLED is terminal
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, Sale, SaleItem, SalePayment, SALE_STATUSES
from ..time_utils import coerce_datetime, utcnow
from ..validation import MAX_PRICE_CENTS
from .concurrency import lock_for_update, run_atomic
from .stock_ledger_service import apply_movement_locked, normalize_pagination, reverse_movement_locked
from .tenant_service import (
    TenantContext,
    require_customer_in_org,
    require_payment_methods_in_org,
    require_product_in_org,
    require_role,
    require_store_in_org,
    scoped_query,
)

SALE_MOVEMENT_REASON = "sale"
CREATABLE_STATUSES = ("PAID", "PENDING")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "PENDING": frozenset({"PAID", "OVERDUE", "CANCELLED"}),
    "OVERDUE": frozenset({"PAID", "CANCELLED"}),
    "PAID": frozenset({"CANCELLED"}),
    "CANCELLED": frozenset(),
}


@dataclass
class SaleItemInput:
    product_id: int
    quantity: int
    unit_price_cents: int
    # Computed as quantity * unit_price_cents when omitted; checked when given
    subtotal_cents: int | None = None


@dataclass
class SalePaymentInput:
    payment_method_id: int
    amount_cents: int
    reference: str | None = None
    notes: str | None = None


@dataclass
class SaleHeaderInput:
    store_id: int
    subtotal_cents: int
    total_cents: int
    status: str = "PAID"
    customer_id: int | None = None
    sale_date: datetime | str | None = None
    due_date: datetime | str | None = None
    notes: str | None = None


def check_transition(current: str, target: str) -> None:
    if target not in SALE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(SALE_STATUSES)}")
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        if current == target == "CANCELLED":
            raise InvalidStateTransitionError(current, target, message="Sale is already cancelled")
        raise InvalidStateTransitionError(current, target)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_items(items: list[SaleItemInput]) -> list[SaleItemInput]:
    if not items:
        raise ValidationError("A sale must have at least one item")

    normalized = []
    for index, item in enumerate(items):
        if not _is_int(item.quantity) or item.quantity <= 0:
            raise ValidationError(f"items[{index}]: quantity must be > 0")
        if not _is_int(item.unit_price_cents) or item.unit_price_cents < 0:
            raise ValidationError(f"items[{index}]: unit_price_cents must be >= 0")
        if item.unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"items[{index}]: unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

        expected = item.quantity * item.unit_price_cents
        if item.subtotal_cents is None:
            item = SaleItemInput(item.product_id, item.quantity, item.unit_price_cents, expected)
        elif item.subtotal_cents != expected:
            raise ValidationError(
                f"items[{index}]: subtotal_cents must equal quantity * unit_price_cents",
                details={"expected": expected, "given": item.subtotal_cents},
            )
        normalized.append(item)
    return normalized


def _validate_payments(payments: list[SalePaymentInput]) -> int:
    paid = 0
    for index, payment in enumerate(payments):
        if not _is_int(payment.amount_cents) or payment.amount_cents <= 0:
            raise ValidationError(f"payments[{index}]: amount_cents must be > 0")
        paid += payment.amount_cents
    return paid


def _validate_sale_request(
    header: SaleHeaderInput,
    items: list[SaleItemInput],
    payments: list[SalePaymentInput],
) -> tuple[list[SaleItemInput], datetime, datetime | None]:
    """
    Everything that can be checked without touching the database.

    Returns the normalized items plus the parsed sale/due dates.
    """
    items = _validate_items(items)

    items_total = sum(item.subtotal_cents for item in items)
    if not (items_total == header.subtotal_cents == header.total_cents):
        raise ValidationError(
            "Item subtotals, sale subtotal and sale total must be equal",
            details={
                "items_total_cents": items_total,
                "subtotal_cents": header.subtotal_cents,
                "total_cents": header.total_cents,
            },
        )

    if header.status not in CREATABLE_STATUSES:
        raise ValidationError(f"A new sale must be {' or '.join(CREATABLE_STATUSES)}")

    try:
        sale_date = coerce_datetime(header.sale_date, field="sale_date") or utcnow()
        due_date = coerce_datetime(header.due_date, field="due_date")
    except ValueError as e:
        raise ValidationError(str(e))

    if header.status == "PENDING":
        if due_date is None:
            raise ValidationError("due_date is required for PENDING sales")
        if due_date < sale_date:
            raise ValidationError("due_date cannot be before sale_date")
    elif due_date is not None:
        raise ValidationError("due_date is only allowed for PENDING sales")

    paid = _validate_payments(payments)
    if header.status == "PAID" and paid != header.total_cents:
        raise ValidationError(
            "Payments must add up to the sale total for PAID sales",
            details={"paid_cents": paid, "total_cents": header.total_cents},
        )
    if header.status == "PENDING" and paid > header.total_cents:
        raise ValidationError(
            "Payments exceed the sale total",
            details={"paid_cents": paid, "total_cents": header.total_cents},
        )

    return items, sale_date, due_date


def _next_sale_number(store) -> str:
    """Advance the store's counter; the caller holds the store row lock."""
    store.last_sale_number = (store.last_sale_number or 0) + 1
    number = f"{store.last_sale_number:06d}"
    if store.sale_number_prefix:
        return f"{store.sale_number_prefix}-{number}"
    return number


def _lock_products(ctx: TenantContext, items: list[SaleItemInput]) -> dict[int, Product]:
    # Lock in id order so two sales sharing products cannot deadlock
    products = {}
    for product_id in sorted({item.product_id for item in items}):
        products[product_id] = require_product_in_org(
            product_id, ctx.org_id, require_active=True, lock=True
        )
    return products


def create_sale(
    ctx: TenantContext,
    header: SaleHeaderInput,
    items: list[SaleItemInput],
    payments: list[SalePaymentInput] | None = None,
) -> Sale:
    """
    Create a sale with its items, payments and stock OUT movements atomically.

    Raises ValidationError, NotFoundError (store, customer, product, payment
    method) or InsufficientStockError. On failure nothing is persisted.
    """
    payments = list(payments or [])
    items, sale_date, due_date = _validate_sale_request(header, list(items or []), payments)

    def _op():
        store = require_store_in_org(header.store_id, ctx.org_id, lock=True)
        if header.customer_id is not None:
            require_customer_in_org(header.customer_id, ctx.org_id)
        require_payment_methods_in_org([p.payment_method_id for p in payments], ctx.org_id)

        products = _lock_products(ctx, items)
        for item in items:
            product = products[item.product_id]
            if product.current_stock < item.quantity:
                raise InsufficientStockError(
                    product_id=product.id,
                    product_name=product.name,
                    available=product.current_stock,
                    requested=item.quantity,
                )

        sale = Sale(
            org_id=ctx.org_id,
            store_id=store.id,
            sale_number=_next_sale_number(store),
            customer_id=header.customer_id,
            user_id=ctx.user_id,
            status=header.status,
            sale_date=sale_date,
            due_date=due_date,
            paid_date=sale_date if header.status == "PAID" else None,
            subtotal_cents=header.subtotal_cents,
            total_cents=header.total_cents,
            notes=header.notes,
        )
        db.session.add(sale)
        db.session.flush()

        for item in items:
            movement = apply_movement_locked(
                ctx,
                products[item.product_id],
                movement_type="OUT",
                quantity=item.quantity,
                reason=SALE_MOVEMENT_REASON,
                reference=str(sale.id),
                store_id=store.id,
            )
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                subtotal_cents=item.subtotal_cents,
                stock_movement_id=movement.id,
            ))

        for payment in payments:
            db.session.add(SalePayment(
                sale_id=sale.id,
                payment_method_id=payment.payment_method_id,
                amount_cents=payment.amount_cents,
                reference=payment.reference,
                notes=payment.notes,
                payment_date=sale_date,
            ))

        db.session.flush()
        return sale

    sale = run_atomic(_op)
    current_app.logger.info(
        "Sale %s (%s) created: org=%s status=%s total_cents=%s items=%s",
        sale.id, sale.sale_number, ctx.org_id, sale.status, sale.total_cents, len(items),
    )
    return sale


def _load_sale(ctx: TenantContext, sale_id: int, *, lock: bool = False) -> Sale:
    query = scoped_query(Sale, ctx.org_id).filter(Sale.id == sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale


def cancel_sale(ctx: TenantContext, sale_id: int, reason: str) -> Sale:
    """
    Cancel a PAID, PENDING or OVERDUE sale and restore its stock.

    Requires the ADMIN role. Each item's OUT movement is reversed through
    the ledger. Cancelling an already cancelled sale raises
    InvalidStateTransitionError and touches no stock.
    """
    def _op():
        require_role(ctx)
        sale = _load_sale(ctx, sale_id, lock=True)
        check_transition(sale.status, "CANCELLED")
        if not reason or not reason.strip():
            raise ValidationError("reason is required to cancel a sale")

        # Same product lock order as create_sale
        for item in sorted(sale.items, key=lambda i: (i.product_id, i.id)):
            if item.stock_movement is not None:
                reverse_movement_locked(ctx, item.stock_movement)

        sale.status = "CANCELLED"
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = ctx.user_id
        sale.cancel_reason = reason.strip()
        db.session.flush()
        return sale

    sale = run_atomic(_op)
    current_app.logger.info("Sale %s cancelled: org=%s reason=%r", sale.id, ctx.org_id, sale.cancel_reason)
    return sale


def update_sale_status(ctx: TenantContext, sale_id: int, status: str) -> Sale:
    """
    Move a sale along the status machine (cancellation excluded).

    Moving to PAID requires the recorded payments to cover the total.
    """
    if status == "CANCELLED":
        raise ValidationError("Use cancel_sale to cancel a sale")

    def _op():
        sale = _load_sale(ctx, sale_id, lock=True)
        check_transition(sale.status, status)

        if status == "PAID":
            if sale.balance_cents != 0:
                raise ValidationError(
                    "Payments must add up to the sale total before it can be PAID",
                    details={"paid_cents": sale.paid_cents, "total_cents": sale.total_cents},
                )
            sale.paid_date = utcnow()

        sale.status = status
        db.session.flush()
        return sale

    sale = run_atomic(_op)
    current_app.logger.info("Sale %s status changed to %s: org=%s", sale.id, sale.status, ctx.org_id)
    return sale


def add_sale_payment(ctx: TenantContext, sale_id: int, payment: SalePaymentInput) -> SalePayment:
    """
    Record a payment against an open sale.

    The amount may not exceed the outstanding balance. When the balance
    reaches zero a PENDING or OVERDUE sale becomes PAID.
    """
    _validate_payments([payment])

    def _op():
        sale = _load_sale(ctx, sale_id, lock=True)
        if sale.status == "CANCELLED":
            raise ValidationError("Cannot add payments to a cancelled sale")

        remaining = sale.balance_cents
        if payment.amount_cents > remaining:
            raise ValidationError(
                f"Payment exceeds the outstanding balance of {remaining}",
                details={"balance_cents": remaining, "amount_cents": payment.amount_cents},
            )

        require_payment_methods_in_org([payment.payment_method_id], ctx.org_id)

        row = SalePayment(
            payment_method_id=payment.payment_method_id,
            amount_cents=payment.amount_cents,
            reference=payment.reference,
            notes=payment.notes,
            payment_date=utcnow(),
        )
        sale.payments.append(row)
        db.session.flush()

        if sale.balance_cents == 0 and sale.status in ("PENDING", "OVERDUE"):
            sale.status = "PAID"
            sale.paid_date = row.payment_date
        db.session.flush()
        return row

    row = run_atomic(_op)
    current_app.logger.info(
        "Payment %s recorded on sale %s: org=%s amount_cents=%s",
        row.id, sale_id, ctx.org_id, row.amount_cents,
    )
    return row


def mark_overdue_sales(ctx: TenantContext, as_of=None) -> int:
    """Flag PENDING sales whose due_date has passed as OVERDUE. Returns the count."""
    try:
        cutoff = coerce_datetime(as_of, field="as_of") or utcnow()
    except ValueError as e:
        raise ValidationError(str(e))

    def _op():
        sales = (
            scoped_query(Sale, ctx.org_id)
            .filter(Sale.status == "PENDING", Sale.due_date < cutoff)
            .all()
        )
        for sale in sales:
            sale.status = "OVERDUE"
        db.session.flush()
        return len(sales)

    count = run_atomic(_op)
    if count:
        current_app.logger.info("Marked %s sale(s) OVERDUE: org=%s", count, ctx.org_id)
    return count


def get_sale(ctx: TenantContext, sale_id: int) -> Sale:
    return _load_sale(ctx, sale_id)


def list_sales(
    ctx: TenantContext,
    *,
    status: str | None = None,
    store_id: int | None = None,
    customer_id: int | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[Sale], int]:
    """Filtered, paginated sales (newest first). Date bounds are inclusive on sale_date."""
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(SALE_STATUSES)}")
    try:
        dt_from = coerce_datetime(date_from, field="date_from")
        dt_to = coerce_datetime(date_to, field="date_to")
    except ValueError as e:
        raise ValidationError(str(e))

    page, limit = normalize_pagination(page, limit)

    q = scoped_query(Sale, ctx.org_id)
    if status is not None:
        q = q.filter(Sale.status == status)
    if store_id is not None:
        q = q.filter(Sale.store_id == store_id)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if dt_from is not None:
        q = q.filter(Sale.sale_date >= dt_from)
    if dt_to is not None:
        q = q.filter(Sale.sale_date <= dt_to)

    total = q.count()
    rows = (
        q.order_by(Sale.sale_date.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
