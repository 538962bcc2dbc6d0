# Overview: Product registration and lookup; opening stock enters through the ledger.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import Product
from ..validation import MAX_PRICE_CENTS
from .concurrency import run_atomic
from .stock_ledger_service import apply_movement_locked, normalize_pagination
from .tenant_service import TenantContext, require_product_in_org, require_store_in_org, scoped_query

INITIAL_STOCK_REASON = "initial stock"


def _check_non_negative(name: str, value, *, maximum: int | None = None) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} cannot exceed {maximum}")


def create_product(
    ctx: TenantContext,
    *,
    name: str,
    sale_price_cents: int,
    cost_price_cents: int = 0,
    sku: str | None = None,
    barcode: str | None = None,
    description: str | None = None,
    min_stock: int = 0,
    initial_stock: int = 0,
    store_id: int | None = None,
) -> Product:
    """
    Create a product with current_stock = 0, then post initial_stock (if any)
    as an IN movement in the same transaction.

    The product never carries stock the ledger cannot explain.
    """
    if not name or not name.strip():
        raise ValidationError("name is required")
    _check_non_negative("sale_price_cents", sale_price_cents, maximum=MAX_PRICE_CENTS)
    _check_non_negative("cost_price_cents", cost_price_cents, maximum=MAX_PRICE_CENTS)
    _check_non_negative("min_stock", min_stock)
    _check_non_negative("initial_stock", initial_stock)

    def _op():
        if store_id is not None:
            require_store_in_org(store_id, ctx.org_id)

        product = Product(
            org_id=ctx.org_id,
            name=name.strip(),
            sku=sku.strip() if sku else None,
            barcode=barcode.strip() if barcode else None,
            description=description,
            sale_price_cents=sale_price_cents,
            cost_price_cents=cost_price_cents,
            min_stock=min_stock,
            current_stock=0,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ValidationError("A product with this SKU already exists", details={"sku": sku})

        if initial_stock > 0:
            apply_movement_locked(
                ctx,
                product,
                movement_type="IN",
                quantity=initial_stock,
                reason=INITIAL_STOCK_REASON,
                store_id=store_id,
            )
        return product

    product = run_atomic(_op)
    current_app.logger.info(
        "Product %s created: org=%s initial_stock=%s", product.id, ctx.org_id, initial_stock
    )
    return product


def get_product(ctx: TenantContext, product_id: int) -> Product:
    return require_product_in_org(product_id, ctx.org_id)


def list_products(
    ctx: TenantContext,
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[Product], int]:
    page, limit = normalize_pagination(page, limit)

    q = scoped_query(Product, ctx.org_id).filter(Product.is_deleted.is_(False))
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern),
            )
        )

    total = q.count()
    rows = q.order_by(Product.name.asc(), Product.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total
