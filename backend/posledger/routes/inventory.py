# backend/posledger/routes/inventory.py
"""
Stock movement routes.

MULTI-TENANT: every route runs for g.org_id (set by @require_auth).

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- date_from/date_to filtering is inclusive on created_at.
"""
from flask import Blueprint, request

from .. import actions
from ..actions import ActionResult
from ..models import StockMovement
from ..services.tenant_service import get_current_context
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_stock_movement,
)
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/stock-movements")

MOVEMENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "type", "quantity", "reason", "reference", "store_id"},
    required_on_create={"product_id", "type", "quantity"},
)

MOVEMENT_NOTES_POLICY = ModelValidationPolicy(
    writable_fields={"reason", "reference"},
)


@inventory_bp.post("")
@require_auth
def create_movement_route():
    """
    Record a stock movement.

    Body: {product_id, type: IN|OUT|ADJUSTMENT, quantity, reason?, reference?, store_id?}
    ADJUSTMENT quantity is a signed delta.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=MOVEMENT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return ActionResult.from_error(e).to_response()

    result = actions.append(
        get_current_context(),
        product_id=patch["product_id"],
        movement_type=patch["type"],
        quantity=patch["quantity"],
        reason=patch.get("reason"),
        reference=patch.get("reference"),
        store_id=patch.get("store_id"),
    )
    return result.to_response()


@inventory_bp.get("")
@require_auth
def list_movements_route():
    """
    Movement history, newest first.

    Query params: product_id, type, user_id, store_id, date_from, date_to,
    search, include_reversed, page, limit.
    """
    args = request.args
    result = actions.list_movements(
        get_current_context(),
        product_id=args.get("product_id", type=int),
        movement_type=args.get("type") or None,
        user_id=args.get("user_id", type=int),
        store_id=args.get("store_id", type=int),
        date_from=args.get("date_from") or None,
        date_to=args.get("date_to") or None,
        search=args.get("search") or None,
        include_reversed=args.get("include_reversed", "").lower() in ("1", "true", "yes"),
        page=args.get("page", 1, type=int),
        limit=args.get("limit", type=int),
    )
    return result.to_response()


@inventory_bp.get("/<int:movement_id>")
@require_auth
def get_movement_route(movement_id: int):
    return actions.get_movement(get_current_context(), movement_id).to_response()


@inventory_bp.patch("/<int:movement_id>")
@require_auth
def update_movement_route(movement_id: int):
    """Edit reason/reference only; quantity and type are immutable."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=MOVEMENT_NOTES_POLICY,
            partial=True,
        )
    except ValidationError as e:
        return ActionResult.from_error(e).to_response()

    result = actions.update_movement_notes(
        get_current_context(),
        movement_id,
        reason=patch.get("reason"),
        reference=patch.get("reference"),
    )
    return result.to_response()


@inventory_bp.post("/<int:movement_id>/reverse")
@require_auth
@require_role("ADMIN")
def reverse_movement_route(movement_id: int):
    """Undo the movement's stock effect and mark it reversed."""
    return actions.reverse(get_current_context(), movement_id).to_response()


@inventory_bp.get("/summary/<int:product_id>")
@require_auth
def summary_route(product_id: int):
    """
    Ledger totals for one product.

    Without date bounds in_sync reports whether current_stock matches the ledger.
    """
    result = actions.summarize(
        get_current_context(),
        product_id,
        date_from=request.args.get("date_from") or None,
        date_to=request.args.get("date_to") or None,
    )
    return result.to_response()


@inventory_bp.get("/drift")
@require_auth
def drift_route():
    return actions.find_stock_drift(get_current_context()).to_response()


@inventory_bp.get("/alerts")
@require_auth
def alerts_route():
    limit = request.args.get("limit", 50, type=int)
    return actions.get_stock_alerts(get_current_context(), limit=limit).to_response()
