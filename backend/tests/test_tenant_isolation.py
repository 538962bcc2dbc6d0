# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two organizations with separate stores and users, then
verify that:
1. A context of Organization A cannot read or write data of Organization B
2. Foreign ids are reported exactly like missing ones (no existence leak)
3. Cross-tenant listings come back empty, not as errors
4. Cross-tenant access attempts are logged

Test Coverage:
- Stores, users, customers, payment methods: lookup helpers
- Products: cross-tenant read and stock writes blocked
- Stock movements: cross-tenant reverse, read and listing blocked
- Sales: cross-tenant creation, read, cancel and listing blocked
"""

import logging

import pytest

from posledger.errors import (
    MovementNotFoundError,
    NotFoundError,
    ProductNotFoundError,
    TenantAccessError,
    ValidationError,
)
from posledger.models import Customer, Product, StockMovement
from posledger.services import product_service
from posledger.services.sales_service import (
    SaleHeaderInput,
    SaleItemInput,
    SalePaymentInput,
    cancel_sale,
    create_sale,
    get_sale,
    list_sales,
)
from posledger.services.stock_ledger_service import (
    append_movement,
    get_movement,
    list_movements,
    reverse_movement,
)
from posledger.services.stock_summary_service import get_stock_alerts, summarize
from posledger.services.tenant_service import (
    require_customer_in_org,
    require_payment_methods_in_org,
    require_store_in_org,
    resolve_user,
    scoped_query,
    validate_org_active,
)


def _sale_in_b(ctx_b, store_b, product_b, cash_b, quantity=2):
    return create_sale(
        ctx_b,
        SaleHeaderInput(store_id=store_b.id, subtotal_cents=quantity * 2000, total_cents=quantity * 2000),
        [SaleItemInput(product_id=product_b.id, quantity=quantity, unit_price_cents=2000)],
        [SalePaymentInput(payment_method_id=cash_b.id, amount_cents=quantity * 2000)],
    )


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_store_in_org_valid(self, db_session, org_a, store_a):
        """Store in its own org passes validation."""
        result = require_store_in_org(store_a.id, org_a.id)
        assert result.id == store_a.id

    def test_require_store_in_org_cross_tenant(self, db_session, org_a, store_b):
        """Store from different org is reported as not found."""
        with pytest.raises(NotFoundError) as exc:
            require_store_in_org(store_b.id, org_a.id)
        assert exc.value.entity == "Store"

    def test_require_store_in_org_nonexistent(self, db_session, org_a):
        """Non-existent store raises the same error as a foreign one."""
        with pytest.raises(NotFoundError):
            require_store_in_org(99999, org_a.id)

    def test_cross_tenant_access_is_logged(self, db_session, caplog, org_a, org_b, store_b):
        """Cross-tenant access attempt is logged with both organizations."""
        with caplog.at_level(logging.WARNING, logger="posledger"):
            with pytest.raises(NotFoundError):
                require_store_in_org(store_b.id, org_a.id)

        messages = [r.getMessage() for r in caplog.records]
        assert any(
            "CROSS_TENANT_ACCESS_DENIED" in m
            and "entity=store" in m
            and f"requested_by_org={org_a.id}" in m
            and f"owner_org={org_b.id}" in m
            for m in messages
        )

    def test_missing_store_is_not_logged_as_cross_tenant(self, db_session, caplog, org_a):
        with caplog.at_level(logging.WARNING, logger="posledger"):
            with pytest.raises(NotFoundError):
                require_store_in_org(99999, org_a.id)
        assert not any("CROSS_TENANT_ACCESS_DENIED" in r.getMessage() for r in caplog.records)

    def test_scoped_query_filters_by_org(self, db_session, org_a, org_b, product_a, product_b):
        ids_a = [p.id for p in scoped_query(Product, org_a.id).all()]
        ids_b = [p.id for p in scoped_query(Product, org_b.id).all()]
        assert ids_a == [product_a.id]
        assert ids_b == [product_b.id]

    def test_resolve_user_cross_org(self, db_session, org_a, user_b):
        with pytest.raises(TenantAccessError):
            resolve_user(org_a.id, user_b.id)

    def test_resolve_user_inactive(self, db_session, org_a, user_a):
        user_a.is_active = False
        db_session.commit()
        with pytest.raises(TenantAccessError):
            resolve_user(org_a.id, user_a.id)

    def test_validate_org_active(self, db_session, org_a):
        assert validate_org_active(org_a.id).id == org_a.id

        org_a.is_active = False
        db_session.commit()
        with pytest.raises(TenantAccessError):
            validate_org_active(org_a.id)

        with pytest.raises(TenantAccessError):
            validate_org_active(99999)

    def test_customer_and_payment_method_lookups(self, db_session, org_a, org_b, cash_a, cash_b):
        customer_b = Customer(org_id=org_b.id, first_name="Bob", last_name="Beta")
        db_session.add(customer_b)
        db_session.commit()

        with pytest.raises(NotFoundError):
            require_customer_in_org(customer_b.id, org_a.id)

        assert set(require_payment_methods_in_org([cash_a.id], org_a.id)) == {cash_a.id}
        with pytest.raises(NotFoundError):
            require_payment_methods_in_org([cash_a.id, cash_b.id], org_a.id)


class TestProductIsolation:
    def test_foreign_product_read(self, db_session, ctx_a, product_b):
        with pytest.raises(ProductNotFoundError):
            product_service.get_product(ctx_a, product_b.id)

    def test_foreign_product_stock_write_blocked(self, db_session, ctx_a, product_b):
        """A movement against another org's product fails and changes nothing."""
        before = db_session.query(StockMovement).count()

        with pytest.raises(ProductNotFoundError):
            append_movement(ctx_a, product_id=product_b.id, movement_type="OUT", quantity=1)

        assert db_session.get(Product, product_b.id).current_stock == 10
        assert db_session.query(StockMovement).count() == before

    def test_foreign_product_summary(self, db_session, ctx_a, product_b):
        with pytest.raises(ProductNotFoundError):
            summarize(ctx_a, product_b.id)

    def test_product_listing_is_scoped(self, db_session, ctx_a, product_a, product_b):
        rows, total = product_service.list_products(ctx_a)
        assert total == 1
        assert [p.id for p in rows] == [product_a.id]

    def test_same_sku_allowed_in_different_orgs(self, db_session, ctx_a, ctx_b, product_a):
        twin = product_service.create_product(ctx_b, name="Twin", sku=product_a.sku, sale_price_cents=100)
        assert twin.sku == product_a.sku

    def test_duplicate_sku_rejected_within_org(self, db_session, ctx_a, product_a):
        with pytest.raises(ValidationError):
            product_service.create_product(ctx_a, name="Clone", sku=product_a.sku, sale_price_cents=100)
        assert db_session.query(Product).filter_by(org_id=ctx_a.org_id).count() == 1

    def test_opening_stock_with_foreign_store(self, db_session, ctx_a, store_b):
        with pytest.raises(NotFoundError):
            product_service.create_product(
                ctx_a, name="Misplaced", sale_price_cents=100, initial_stock=5, store_id=store_b.id
            )
        assert db_session.query(Product).filter_by(name="Misplaced").count() == 0

    def test_alerts_are_scoped(self, db_session, ctx_a, ctx_b):
        product_service.create_product(ctx_b, name="B empty", sale_price_cents=100, min_stock=3)
        assert get_stock_alerts(ctx_a) == []
        assert len(get_stock_alerts(ctx_b)) == 1


class TestMovementIsolation:
    def test_foreign_movement_reverse(self, db_session, ctx_a, ctx_b, product_b):
        movement = append_movement(ctx_b, product_id=product_b.id, movement_type="OUT", quantity=2)

        with pytest.raises(MovementNotFoundError):
            reverse_movement(ctx_a, movement.id)

        assert db_session.get(StockMovement, movement.id).reversed_at is None
        assert db_session.get(Product, product_b.id).current_stock == 8

    def test_foreign_movement_read(self, db_session, ctx_a, ctx_b, product_b):
        movement = append_movement(ctx_b, product_id=product_b.id, movement_type="IN", quantity=1)
        with pytest.raises(MovementNotFoundError):
            get_movement(ctx_a, movement.id)

    def test_movement_listing_is_scoped(self, db_session, ctx_a, ctx_b, product_a, product_b):
        rows, total = list_movements(ctx_a)
        assert total == 1
        assert {m.product_id for m in rows} == {product_a.id}

        rows, total = list_movements(ctx_a, product_id=product_b.id)
        assert total == 0
        assert rows == []

    def test_foreign_store_on_movement(self, db_session, ctx_a, product_a, store_b):
        with pytest.raises(NotFoundError):
            append_movement(ctx_a, product_id=product_a.id, movement_type="IN", quantity=1, store_id=store_b.id)
        assert db_session.get(Product, product_a.id).current_stock == 10


class TestSaleIsolation:
    def test_foreign_sale_read(self, db_session, ctx_a, ctx_b, store_b, product_b, cash_b):
        sale = _sale_in_b(ctx_b, store_b, product_b, cash_b)
        with pytest.raises(NotFoundError):
            get_sale(ctx_a, sale.id)

    def test_foreign_sale_cancel(self, db_session, ctx_a, ctx_b, store_b, product_b, cash_b):
        sale = _sale_in_b(ctx_b, store_b, product_b, cash_b)

        with pytest.raises(NotFoundError):
            cancel_sale(ctx_a, sale.id, "not mine")

        assert get_sale(ctx_b, sale.id).status == "PAID"
        assert db_session.get(Product, product_b.id).current_stock == 8

    def test_sale_listing_is_scoped(self, db_session, ctx_a, ctx_b, store_b, product_b, cash_b):
        _sale_in_b(ctx_b, store_b, product_b, cash_b)
        rows, total = list_sales(ctx_a)
        assert (rows, total) == ([], 0)
        assert list_sales(ctx_b)[1] == 1

    @pytest.mark.parametrize("foreign", ["store", "product", "payment_method"])
    def test_create_sale_with_foreign_reference(
        self, db_session, foreign, ctx_a, store_a, store_b, product_a, product_b, cash_a, cash_b
    ):
        store = store_b if foreign == "store" else store_a
        product = product_b if foreign == "product" else product_a
        method = cash_b if foreign == "payment_method" else cash_a

        with pytest.raises(NotFoundError):
            create_sale(
                ctx_a,
                SaleHeaderInput(store_id=store.id, subtotal_cents=1000, total_cents=1000),
                [SaleItemInput(product_id=product.id, quantity=1, unit_price_cents=1000)],
                [SalePaymentInput(payment_method_id=method.id, amount_cents=1000)],
            )

        assert db_session.get(Product, product_a.id).current_stock == 10
        assert db_session.get(Product, product_b.id).current_stock == 10
        assert list_sales(ctx_a)[1] == 0
