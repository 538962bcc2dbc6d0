# Overview: Read-only stock aggregation over the ledger (audits, reconciliation, alerts).

from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..time_utils import coerce_datetime, to_utc_z
from .tenant_service import TenantContext, require_product_in_org, scoped_query


@dataclass
class StockSummary:
    product_id: int
    total_in: int
    total_out: int
    total_adjustment: int
    computed_stock: int
    movement_count: int
    current_stock: int
    # None when a date bound makes the comparison meaningless
    in_sync: bool | None
    date_from: str | None = None
    date_to: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _bucket_columns():
    """SUM per movement type plus row count, in one aggregate SELECT."""
    return (
        func.coalesce(func.sum(case((StockMovement.type == "IN", StockMovement.quantity), else_=0)), 0),
        func.coalesce(func.sum(case((StockMovement.type == "OUT", StockMovement.quantity), else_=0)), 0),
        func.coalesce(func.sum(case((StockMovement.type == "ADJUSTMENT", StockMovement.quantity), else_=0)), 0),
        func.count(StockMovement.id),
    )


def summarize(ctx: TenantContext, product_id: int, date_from=None, date_to=None) -> StockSummary:
    """
    Recompute a product's stock from its non-reversed movements.

    With no date bound, computed_stock must equal Product.current_stock;
    in_sync reports whether it does. Date bounds are inclusive on
    created_at. Takes no locks and writes nothing.
    """
    try:
        dt_from = coerce_datetime(date_from, field="date_from")
        dt_to = coerce_datetime(date_to, field="date_to")
    except ValueError as e:
        raise ValidationError(str(e))
    if dt_from is not None and dt_to is not None and dt_from > dt_to:
        raise ValidationError("date_from must be before date_to")

    product = require_product_in_org(product_id, ctx.org_id)

    q = db.session.query(*_bucket_columns()).filter(
        StockMovement.org_id == ctx.org_id,
        StockMovement.product_id == product.id,
        StockMovement.reversed_at.is_(None),
    )
    if dt_from is not None:
        q = q.filter(StockMovement.created_at >= dt_from)
    if dt_to is not None:
        q = q.filter(StockMovement.created_at <= dt_to)

    total_in, total_out, total_adjustment, count = q.one()
    total_in, total_out, total_adjustment = int(total_in), int(total_out), int(total_adjustment)
    computed = total_in - total_out + total_adjustment

    unbounded = dt_from is None and dt_to is None
    return StockSummary(
        product_id=product.id,
        total_in=total_in,
        total_out=total_out,
        total_adjustment=total_adjustment,
        computed_stock=computed,
        movement_count=int(count),
        current_stock=product.current_stock,
        in_sync=(computed == product.current_stock) if unbounded else None,
        date_from=to_utc_z(dt_from),
        date_to=to_utc_z(dt_to),
    )


def find_stock_drift(ctx: TenantContext) -> list[dict]:
    """
    Products whose denormalized current_stock disagrees with the ledger.

    An empty list means the organization's cache and ledger are consistent.
    """
    net = func.coalesce(
        func.sum(
            case(
                (StockMovement.type == "OUT", -StockMovement.quantity),
                else_=StockMovement.quantity,
            )
        ),
        0,
    )
    ledger = (
        db.session.query(StockMovement.product_id.label("product_id"), net.label("computed"))
        .filter(
            StockMovement.org_id == ctx.org_id,
            StockMovement.reversed_at.is_(None),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )

    computed = func.coalesce(ledger.c.computed, 0)
    rows = (
        db.session.query(Product, computed)
        .outerjoin(ledger, ledger.c.product_id == Product.id)
        .filter(
            Product.org_id == ctx.org_id,
            Product.is_deleted.is_(False),
            Product.current_stock != computed,
        )
        .order_by(Product.id)
        .all()
    )

    return [
        {
            "product_id": product.id,
            "product_name": product.name,
            "current_stock": product.current_stock,
            "computed_stock": int(value),
            "drift": product.current_stock - int(value),
        }
        for product, value in rows
    ]


def _alert_severity(current_stock: int, min_stock: int) -> str:
    if current_stock <= 0:
        return "critical"
    if current_stock * 2 <= min_stock:
        return "warning"
    return "info"


def get_stock_alerts(ctx: TenantContext, limit: int = 50) -> list[dict]:
    """Active products at or below their minimum stock, lowest stock first."""
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
        raise ValidationError("limit must be a positive integer")

    products = (
        scoped_query(Product, ctx.org_id)
        .filter(
            Product.is_deleted.is_(False),
            Product.is_active.is_(True),
            Product.current_stock <= Product.min_stock,
        )
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )

    return [
        {
            "product_id": p.id,
            "product_name": p.name,
            "current_stock": p.current_stock,
            "min_stock": p.min_stock,
            "deficit": p.min_stock - p.current_stock,
            "severity": _alert_severity(p.current_stock, p.min_stock),
        }
        for p in products
    ]
