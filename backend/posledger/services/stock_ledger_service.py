# Overview: StockMovement ledger; the only writer of Product.current_stock.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..errors import InsufficientStockError, MovementNotFoundError, ValidationError
from ..extensions import db
from ..models import MOVEMENT_TYPES, Product, Sale, SaleItem, StockMovement
from ..time_utils import coerce_datetime, utcnow
from .concurrency import lock_for_update, run_atomic
from .tenant_service import (
    TenantContext,
    require_product_in_org,
    require_role,
    require_store_in_org,
    scoped_query,
)
"""
Stock Ledger Invariants (authoritative)

- Every change of Product.current_stock is caused by exactly one
  StockMovement insert or one StockMovement reversal, in the same DB
  transaction. Nothing else writes current_stock.
- current_stock == SUM(stock_delta) over non-reversed movements.
- current_stock >= 0 at all times; any movement or reversal that would
  break this is rejected before anything is written.
- IN/OUT quantities are > 0 and the type carries the direction.
  ADJUSTMENT quantity is a signed, non-zero delta.
- Movements are never updated in quantity/type. Reversal stamps
  reversed_at (soft delete) and applies the inverse delta.
- An OUT posted by a sale is undone only by cancelling that sale.
- Check-and-update of stock runs under the Product row lock
  (BEGIN IMMEDIATE on SQLite) so concurrent OUTs cannot oversell.
"""


def validate_movement_input(movement_type: str, quantity) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(MOVEMENT_TYPES)}",
            details={"type": movement_type},
        )
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if movement_type in ("IN", "OUT") and quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {movement_type}")
    if movement_type == "ADJUSTMENT" and quantity == 0:
        raise ValidationError("quantity must be non-zero for ADJUSTMENT")


def _signed_delta(movement_type: str, quantity: int) -> int:
    return -quantity if movement_type == "OUT" else quantity


def apply_movement_locked(
    ctx: TenantContext,
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    reference: str | None = None,
    store_id: int | None = None,
) -> StockMovement:
    """
    Core append logic without locking, retry, or commit.

    The caller must hold the Product row lock (require_product_in_org(lock=True))
    inside an open write transaction. Used by append_movement() and by the
    sale composer, which posts several movements in one transaction.
    """
    validate_movement_input(movement_type, quantity)

    previous = product.current_stock
    new_stock = previous + _signed_delta(movement_type, quantity)
    if new_stock < 0:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=previous,
            requested=abs(quantity),
        )

    movement = StockMovement(
        org_id=ctx.org_id,
        product_id=product.id,
        store_id=store_id,
        user_id=ctx.user_id,
        type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
        created_at=utcnow(),
    )
    product.current_stock = new_stock

    db.session.add(movement)
    db.session.flush()
    return movement


def append_movement(
    ctx: TenantContext,
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    reference: str | None = None,
    store_id: int | None = None,
) -> StockMovement:
    """
    Record one inventory-affecting event and update the product's stock.

    Raises ValidationError, ProductNotFoundError, NotFoundError (store),
    or InsufficientStockError. On any failure nothing is written.
    """
    validate_movement_input(movement_type, quantity)

    def _op():
        if store_id is not None:
            require_store_in_org(store_id, ctx.org_id)
        product = require_product_in_org(product_id, ctx.org_id, lock=True)
        return apply_movement_locked(
            ctx,
            product,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            reference=reference,
            store_id=store_id,
        )

    movement = run_atomic(_op)
    current_app.logger.info(
        "Stock movement %s recorded: org=%s product=%s type=%s qty=%s stock %s -> %s",
        movement.id, ctx.org_id, movement.product_id, movement.type,
        movement.quantity, movement.previous_stock, movement.new_stock,
    )
    return movement


def reverse_movement_locked(ctx: TenantContext, movement: StockMovement) -> StockMovement:
    """
    Core reversal logic without retry or commit.

    Locks the owning product, applies the inverse delta and soft-deletes the
    movement. The caller has already checked the movement is not reversed.
    """
    product = require_product_in_org(movement.product_id, ctx.org_id, lock=True)

    inverse = -movement.stock_delta
    new_stock = product.current_stock + inverse
    if new_stock < 0:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=product.current_stock,
            requested=-inverse,
        )

    product.current_stock = new_stock
    movement.reversed_at = utcnow()
    movement.reversed_by_user_id = ctx.user_id
    db.session.flush()
    return movement


def _load_active_movement(ctx: TenantContext, movement_id: int, *, lock: bool = False) -> StockMovement:
    query = scoped_query(StockMovement, ctx.org_id).filter(StockMovement.id == movement_id)
    if lock:
        query = lock_for_update(query)
    movement = query.first()
    if movement is None:
        raise MovementNotFoundError(movement_id)
    if movement.is_reversed:
        raise MovementNotFoundError(movement_id, message="Stock movement already reversed")
    return movement


def _reject_sale_movement(movement: StockMovement) -> None:
    sale = (
        db.session.query(Sale)
        .join(SaleItem, SaleItem.sale_id == Sale.id)
        .filter(SaleItem.stock_movement_id == movement.id, Sale.status != "CANCELLED")
        .first()
    )
    if sale is not None:
        raise ValidationError(
            f"Stock movement belongs to sale {sale.sale_number}; cancel the sale instead",
            details={"sale_id": sale.id, "movement_id": movement.id},
        )


def reverse_movement(ctx: TenantContext, movement_id: int) -> StockMovement:
    """
    Undo a movement's stock effect and soft-delete it, atomically.

    Requires the ADMIN role. Raises PermissionDeniedError,
    MovementNotFoundError (missing, foreign, or already reversed),
    ValidationError (the movement belongs to a sale) or
    InsufficientStockError (undoing an IN would drive stock negative).
    """
    def _op():
        require_role(ctx)
        movement = _load_active_movement(ctx, movement_id, lock=True)
        _reject_sale_movement(movement)
        return reverse_movement_locked(ctx, movement)

    movement = run_atomic(_op)
    current_app.logger.info(
        "Stock movement %s reversed: org=%s product=%s type=%s qty=%s",
        movement.id, ctx.org_id, movement.product_id, movement.type, movement.quantity,
    )
    return movement


def get_movement(ctx: TenantContext, movement_id: int) -> StockMovement:
    movement = scoped_query(StockMovement, ctx.org_id).filter(StockMovement.id == movement_id).first()
    if movement is None:
        raise MovementNotFoundError(movement_id)
    return movement


def list_movements(
    ctx: TenantContext,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    user_id: int | None = None,
    store_id: int | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
    page: int = 1,
    limit: int | None = None,
    include_reversed: bool = False,
) -> tuple[list[StockMovement], int]:
    """
    Filtered, paginated movement history (newest first).

    Date bounds are inclusive on created_at. search matches reason,
    reference and product name, case-insensitively.
    """
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")

    try:
        dt_from = coerce_datetime(date_from, field="date_from")
        dt_to = coerce_datetime(date_to, field="date_to")
    except ValueError as e:
        raise ValidationError(str(e))

    page, limit = normalize_pagination(page, limit)

    q = scoped_query(StockMovement, ctx.org_id)
    if not include_reversed:
        q = q.filter(StockMovement.reversed_at.is_(None))
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == movement_type)
    if user_id is not None:
        q = q.filter(StockMovement.user_id == user_id)
    if store_id is not None:
        q = q.filter(StockMovement.store_id == store_id)
    if dt_from is not None:
        q = q.filter(StockMovement.created_at >= dt_from)
    if dt_to is not None:
        q = q.filter(StockMovement.created_at <= dt_to)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.join(Product, Product.id == StockMovement.product_id).filter(
            or_(
                StockMovement.reason.ilike(pattern),
                StockMovement.reference.ilike(pattern),
                Product.name.ilike(pattern),
            )
        )

    total = q.count()
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def update_movement_notes(
    ctx: TenantContext,
    movement_id: int,
    *,
    reason: str | None = None,
    reference: str | None = None,
) -> StockMovement:
    """Edit the free-text fields of a movement. Quantity and type are immutable."""
    if reason is None and reference is None:
        raise ValidationError("Nothing to update: provide reason and/or reference")

    def _op():
        movement = _load_active_movement(ctx, movement_id, lock=True)
        if reason is not None:
            movement.reason = reason
        if reference is not None:
            movement.reference = reference
        db.session.flush()
        return movement

    return run_atomic(_op)


def normalize_pagination(page, limit) -> tuple[int, int]:
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 200)
    if limit is None:
        limit = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    if not isinstance(page, int) or page < 1:
        raise ValidationError("page must be a positive integer")
    if not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    return page, min(limit, max_limit)
