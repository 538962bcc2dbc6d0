# Overview: Pytest coverage for the Flask CLI command groups.

from sqlalchemy import update

from posledger.models import Organization, PaymentMethod, Product, Sale, StockMovement, User
from posledger.services.sales_service import SaleHeaderInput, SaleItemInput, create_sale


def _seed(runner):
    result = runner.invoke(args=["system", "seed", "--org-code", "CLI"])
    assert result.exit_code == 0, result.output
    return result


class TestSystemCommands:
    def test_init_db(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_seed_creates_demo_tenant(self, app, db_session):
        result = _seed(app.test_cli_runner())

        org = db_session.query(Organization).filter_by(code="CLI").one()
        assert "DONE Demo tenant ready" in result.output
        assert f"X-Org-Id: {org.id}" in result.output
        assert db_session.query(User).filter_by(org_id=org.id).count() == 2
        assert db_session.query(PaymentMethod).filter_by(org_id=org.id).count() == 3

        products = db_session.query(Product).filter_by(org_id=org.id).all()
        assert len(products) == 5
        # Opening stock is explained by exactly one IN movement per stocked product
        stocked = [p for p in products if p.current_stock > 0]
        assert db_session.query(StockMovement).filter_by(org_id=org.id, type="IN").count() == len(stocked)

    def test_seed_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        _seed(runner)
        second = _seed(runner)

        assert "Using existing organization" in second.output
        assert "PASS Products created: 0" in second.output
        assert db_session.query(Organization).filter_by(code="CLI").count() == 1
        assert db_session.query(Product).count() == 5


class TestStockCommands:
    def test_summary(self, app, db_session, org_a, product_a):
        result = app.test_cli_runner().invoke(
            args=["stock", "summary", "--org-id", str(org_a.id), "--product-id", str(product_a.id)]
        )
        assert result.exit_code == 0
        assert "IN:          10" in result.output
        assert "In sync:     yes" in result.output

    def test_summary_date_bounded(self, app, db_session, org_a, product_a):
        result = app.test_cli_runner().invoke(args=[
            "stock", "summary", "--org-id", str(org_a.id), "--product-id", str(product_a.id),
            "--from", "2000-01-01", "--to", "2000-12-31",
        ])
        assert "n/a (date-bounded)" in result.output

    def test_summary_foreign_product(self, app, db_session, org_a, product_b):
        result = app.test_cli_runner().invoke(
            args=["stock", "summary", "--org-id", str(org_a.id), "--product-id", str(product_b.id)]
        )
        assert "FAIL [404] Product not found" in result.output

    def test_unknown_org(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["stock", "alerts", "--org-id", "99999"])
        assert "FAIL Organization not found" in result.output

    def test_reconcile_clean(self, app, db_session, org_a, product_a):
        result = app.test_cli_runner().invoke(args=["stock", "reconcile", "--org-id", str(org_a.id)])
        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_reconcile_reports_drift(self, app, db_session, org_a, product_a):
        db_session.execute(update(Product).where(Product.id == product_a.id).values(current_stock=7))
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["stock", "reconcile", "--org-id", str(org_a.id)])

        assert result.exit_code == 1
        assert "Product A" in result.output
        assert "FAIL 1 product(s) out of sync" in result.output

    def test_alerts(self, app, db_session):
        runner = app.test_cli_runner()
        _seed(runner)
        org = db_session.query(Organization).filter_by(code="CLI").one()

        result = runner.invoke(args=["stock", "alerts", "--org-id", str(org.id)])

        lines = result.output.strip().splitlines()
        assert lines[0].startswith("CRITICAL")
        assert "Paper Cups" in lines[0]
        assert lines[1].startswith("INFO")
        assert "Black Tea Box" in lines[1]


class TestSalesCommands:
    def test_mark_overdue(self, app, db_session, org_a, ctx_a, store_a, product_a):
        create_sale(
            ctx_a,
            SaleHeaderInput(
                store_id=store_a.id,
                subtotal_cents=1000,
                total_cents=1000,
                status="PENDING",
                sale_date="2024-03-01T00:00:00Z",
                due_date="2024-03-15T00:00:00Z",
            ),
            [SaleItemInput(product_id=product_a.id, quantity=1, unit_price_cents=1000)],
        )

        result = app.test_cli_runner().invoke(
            args=["sales", "mark-overdue", "--org-id", str(org_a.id), "--as-of", "2024-04-01T00:00:00Z"]
        )

        assert "PASS Marked 1 sale(s) OVERDUE" in result.output
        db_session.expire_all()
        assert db_session.query(Sale).one().status == "OVERDUE"

    def test_mark_overdue_bad_date(self, app, db_session, org_a):
        result = app.test_cli_runner().invoke(
            args=["sales", "mark-overdue", "--org-id", str(org_a.id), "--as-of", "someday"]
        )
        assert result.output.startswith("FAIL [400]")
