"""
Multi-Tenant Service: Tenant Context and Scoping Helpers

Every operation runs for exactly one organization and one acting user.
That pair travels explicitly as a TenantContext; routes build it from the
authenticated request (g.org_id / g.current_user), CLI commands from options.

SECURITY INVARIANTS:
1. Every service operation receives a TenantContext
2. Entity ids from client input are resolved with an org_id filter
3. An entity of another organization is indistinguishable from a missing one
4. Cross-tenant lookups are logged
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g

from ..errors import NotFoundError, PermissionDeniedError, ProductNotFoundError, TenantAccessError
from ..extensions import db
from ..models import Customer, Organization, PaymentMethod, Product, Store, User
from .concurrency import lock_for_update

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class TenantContext:
    """Request-scoped tenant and actor."""
    org_id: int
    user_id: int | None = None


def get_current_context() -> TenantContext:
    """
    Build the TenantContext for the current request from Flask g.

    SECURITY: Raises TenantAccessError if org_id not set. This should never
    happen after @require_auth, but is a safety check.
    """
    if getattr(g, "org_id", None) is None:
        raise TenantAccessError("Tenant context not established")
    user = getattr(g, "current_user", None)
    return TenantContext(org_id=g.org_id, user_id=user.id if user else None)


def validate_org_active(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()

    if not org:
        raise TenantAccessError("Organization not found")

    if not org.is_active:
        raise TenantAccessError("Organization is not active")

    return org


def resolve_user(org_id: int, user_id: int) -> User:
    """Resolve an active user inside the organization, or raise TenantAccessError."""
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None or not user.is_active:
        raise TenantAccessError("User not found or inactive")
    if user.org_id != org_id:
        _log_cross_tenant_attempt("user", user_id, org_id, user.org_id)
        raise TenantAccessError("User not found or inactive")
    return user


def require_role(ctx: TenantContext, role: str = ADMIN_ROLE) -> User:
    """
    Require the acting user to hold a role, raise PermissionDeniedError if not.

    Used by operations that undo recorded stock (movement reversal, sale
    cancellation). Denials are logged with the tenant context.
    """
    user = None
    if ctx.user_id is not None:
        user = scoped_query(User, ctx.org_id).filter(User.id == ctx.user_id).first()

    if user is None or not user.is_active or user.role != role:
        current_app.logger.warning(
            "PERMISSION_DENIED org=%s user=%s required_role=%s actual_role=%s",
            ctx.org_id, ctx.user_id, role, user.role if user else None,
        )
        raise PermissionDeniedError(role)
    return user


def scoped_query(model, org_id: int):
    """
    Base query for an org-owned model (must have an org_id column).

    Usage:
        products = scoped_query(Product, ctx.org_id).filter_by(is_active=True).all()
    """
    return db.session.query(model).filter(model.org_id == org_id)


def require_store_in_org(store_id: int, org_id: int, *, lock: bool = False) -> Store:
    """
    Validate that an active, non-deleted store belongs to the organization.

    Raises NotFoundError for missing, deleted, or foreign stores.
    lock=True is used when the store's sale number counter is advanced.
    """
    query = db.session.query(Store).filter_by(id=store_id)
    if lock:
        query = lock_for_update(query)
    store = query.first()

    if store is None or store.is_deleted or not store.is_active:
        raise NotFoundError("Store", store_id)

    if store.org_id != org_id:
        _log_cross_tenant_attempt("store", store_id, org_id, store.org_id)
        raise NotFoundError("Store", store_id)

    return store


def require_product_in_org(
    product_id: int,
    org_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    """
    Resolve a non-deleted product inside the organization.

    lock=True takes the row lock used by every stock check-and-update.
    """
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()

    if product is None or product.is_deleted:
        raise ProductNotFoundError(product_id)

    if product.org_id != org_id:
        _log_cross_tenant_attempt("product", product_id, org_id, product.org_id)
        raise ProductNotFoundError(product_id)

    if require_active and not product.is_active:
        raise NotFoundError("Product", product_id, message="Product is inactive")

    return product


def require_customer_in_org(customer_id: int, org_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if customer is None or customer.is_deleted:
        raise NotFoundError("Customer", customer_id)
    if customer.org_id != org_id:
        _log_cross_tenant_attempt("customer", customer_id, org_id, customer.org_id)
        raise NotFoundError("Customer", customer_id)
    return customer


def require_payment_methods_in_org(method_ids: list[int], org_id: int) -> dict[int, PaymentMethod]:
    """Batch-resolve active payment methods; any missing or foreign id fails the batch."""
    if not method_ids:
        return {}

    methods = (
        scoped_query(PaymentMethod, org_id)
        .filter(
            PaymentMethod.id.in_(set(method_ids)),
            PaymentMethod.is_active.is_(True),
            PaymentMethod.is_deleted.is_(False),
        )
        .all()
    )
    by_id = {m.id: m for m in methods}
    missing = sorted(set(method_ids) - set(by_id))
    if missing:
        raise NotFoundError("Payment method", missing[0])
    return by_id


def _log_cross_tenant_attempt(entity: str, entity_id, org_id: int, owner_org_id: int) -> None:
    """
    SECURITY: Audit trail for detecting unauthorized access attempts.
    """
    current_app.logger.warning(
        "CROSS_TENANT_ACCESS_DENIED entity=%s id=%s requested_by_org=%s owner_org=%s",
        entity, entity_id, org_id, owner_org_id,
    )
