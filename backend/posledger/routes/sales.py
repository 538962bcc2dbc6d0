# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""
Sales API routes.

A sale is created in one request with its items and payments; stock OUT
movements are posted in the same transaction. Cancelling restores stock.

Body for POST /api/sales:
{
  "store_id": 1, "customer_id": null, "status": "PAID" | "PENDING",
  "sale_date": "...", "due_date": "..." (PENDING only), "notes": "...",
  "subtotal_cents": 4000, "total_cents": 4000,
  "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 2000}],
  "payments": [{"payment_method_id": 1, "amount_cents": 4000}]
}
"""

from flask import Blueprint, request

from .. import actions
from ..actions import ActionResult
from ..models import Sale, SaleItem, SalePayment
from ..services.sales_service import SaleHeaderInput, SaleItemInput, SalePaymentInput
from ..services.tenant_service import get_current_context
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    validate_payload_list,
    ValidationError,
)
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_id",
        "customer_id",
        "status",
        "sale_date",
        "due_date",
        "notes",
        "subtotal_cents",
        "total_cents",
    },
    required_on_create={"store_id", "subtotal_cents", "total_cents"},
)

SALE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "unit_price_cents", "subtotal_cents"},
    required_on_create={"product_id", "quantity", "unit_price_cents"},
)

SALE_PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"payment_method_id", "amount_cents", "reference", "notes"},
    required_on_create={"payment_method_id", "amount_cents"},
)


def _payment_from_patch(patch: dict) -> SalePaymentInput:
    return SalePaymentInput(
        payment_method_id=patch["payment_method_id"],
        amount_cents=patch["amount_cents"],
        reference=patch.get("reference"),
        notes=patch.get("notes"),
    )


@sales_bp.post("")
@require_auth
def create_sale_route():
    """Create a sale with items and payments in one transaction."""
    payload = dict(request.get_json(silent=True) or {})
    raw_items = payload.pop("items", None)
    raw_payments = payload.pop("payments", None)

    try:
        header = validate_payload(model=Sale, payload=payload, policy=SALE_POLICY, partial=False)
        items = validate_payload_list(
            model=SaleItem, payload=raw_items, policy=SALE_ITEM_POLICY, field="items"
        )
        payments = validate_payload_list(
            model=SalePayment, payload=raw_payments, policy=SALE_PAYMENT_POLICY, field="payments"
        )
    except ValidationError as e:
        return ActionResult.from_error(e).to_response()

    result = actions.create_sale(
        get_current_context(),
        SaleHeaderInput(
            store_id=header["store_id"],
            subtotal_cents=header["subtotal_cents"],
            total_cents=header["total_cents"],
            status=header.get("status") or "PAID",
            customer_id=header.get("customer_id"),
            sale_date=header.get("sale_date"),
            due_date=header.get("due_date"),
            notes=header.get("notes"),
        ),
        [
            SaleItemInput(
                product_id=item["product_id"],
                quantity=item["quantity"],
                unit_price_cents=item["unit_price_cents"],
                subtotal_cents=item.get("subtotal_cents"),
            )
            for item in items
        ],
        [_payment_from_patch(p) for p in payments],
    )
    return result.to_response()


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales, newest first.

    Query params: status, store_id, customer_id, date_from, date_to, page, limit.
    """
    args = request.args
    result = actions.list_sales(
        get_current_context(),
        status=args.get("status") or None,
        store_id=args.get("store_id", type=int),
        customer_id=args.get("customer_id", type=int),
        date_from=args.get("date_from") or None,
        date_to=args.get("date_to") or None,
        page=args.get("page", 1, type=int),
        limit=args.get("limit", type=int),
    )
    return result.to_response()


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    return actions.get_sale(get_current_context(), sale_id).to_response()


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_role("ADMIN")
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale and restore its stock.

    Body: {"reason": "..."}
    """
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")
    if not isinstance(reason, str):
        reason = ""
    return actions.cancel_sale(get_current_context(), sale_id, reason).to_response()


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
def update_status_route(sale_id: int):
    """
    Change status (PAID / OVERDUE). Cancellation uses /cancel.

    Body: {"status": "PAID"}
    """
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not isinstance(status, str) or not status:
        return ActionResult.from_error(ValidationError("status required")).to_response()
    return actions.update_sale_status(get_current_context(), sale_id, status).to_response()


@sales_bp.post("/<int:sale_id>/payments")
@require_auth
def add_payment_route(sale_id: int):
    """Record a payment; a fully paid PENDING/OVERDUE sale becomes PAID."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=SalePayment,
            payload=payload,
            policy=SALE_PAYMENT_POLICY,
            partial=False,
        )
    except ValidationError as e:
        return ActionResult.from_error(e).to_response()

    result = actions.add_sale_payment(get_current_context(), sale_id, _payment_from_patch(patch))
    return result.to_response()


@sales_bp.post("/mark-overdue")
@require_auth
def mark_overdue_route():
    """
    Flag PENDING sales past their due_date as OVERDUE.

    Body (optional): {"as_of": "2024-06-01T00:00:00Z"}
    """
    data = request.get_json(silent=True) or {}
    return actions.mark_overdue_sales(get_current_context(), data.get("as_of")).to_response()
