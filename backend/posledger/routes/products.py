# Overview: Flask API routes for products; parses input and returns JSON responses.

# backend/posledger/routes/products.py
"""
Product routes with multi-tenant support.

MULTI-TENANT: All product operations are scoped to the caller's organization.
The org_id is derived from g.org_id (set by @require_auth).

Opening stock is accepted as initial_stock and recorded as an IN movement;
current_stock itself is never writable.
"""
from flask import Blueprint, request

from .. import actions
from ..actions import ActionResult
from ..models import Product
from ..services.tenant_service import get_current_context
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "sku",
        "barcode",
        "description",
        "sale_price_cents",
        "cost_price_cents",
        "min_stock",
    },
    required_on_create={"name", "sale_price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List products.

    Query params:
    - search: matches name, SKU or barcode
    - include_inactive: "1"/"true" to include inactive products
    - page, limit
    """
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    result = actions.list_products(
        get_current_context(),
        search=request.args.get("search"),
        include_inactive=include_inactive,
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", type=int),
    )
    return result.to_response()


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a product, optionally with opening stock.

    Body: product fields plus optional initial_stock and store_id.
    """
    payload = dict(request.get_json(silent=True) or {})
    initial_stock = payload.pop("initial_stock", 0)
    store_id = payload.pop("store_id", None)

    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
    except ValidationError as e:
        return ActionResult.from_error(e).to_response()

    result = actions.create_product(
        get_current_context(),
        initial_stock=initial_stock,
        store_id=store_id,
        **patch,
    )
    return result.to_response()


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    return actions.get_product(get_current_context(), product_id).to_response()
