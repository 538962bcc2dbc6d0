# Overview: Flask CLI command groups for bootstrap, stock inspection, and sale maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (development; use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed [--org "Org Name"] [--org-code DEMO]
#   Idempotent demo tenant: organization, store, users, payment methods, products with opening stock.
#
# Stock inspection:
# - python -m flask stock summary --org-id 1 --product-id 3 [--from 2024-01-01] [--to 2024-01-31]
#   Ledger totals for one product; without dates also checks current_stock against the ledger.
# - python -m flask stock reconcile --org-id 1
#   List products whose current_stock disagrees with the ledger (exit code 1 if any).
# - python -m flask stock alerts --org-id 1 [--limit 20]
#   Products at or below their minimum stock.
#
# Sales maintenance:
# - python -m flask sales mark-overdue --org-id 1 [--as-of 2024-06-01]
#   Flag PENDING sales whose due date has passed as OVERDUE.

import click
from flask.cli import with_appcontext

from . import actions
from .extensions import db
from .models import Organization, PaymentMethod, Product, Store, User
from .services.tenant_service import TenantContext, validate_org_active
from .errors import TenantAccessError


def _context_for(org_id: int, user_id=None):
    """TenantContext for a CLI run, or None (after printing why) if the org is unusable."""
    try:
        validate_org_active(org_id)
    except TenantAccessError as e:
        click.echo(f"FAIL {e} (org_id={org_id})")
        return None
    return TenantContext(org_id=org_id, user_id=user_id)


def _echo_failure(result) -> None:
    click.echo(f"FAIL [{result.status}] {result.message}")


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to load demo data.")


@system_group.command('seed')
@click.option('--org', 'org_name', default='Demo Organization', help='Organization name')
@click.option('--org-code', default='DEMO', help='Organization code')
@with_appcontext
def seed(org_name, org_code):
    """
    Seed a demo tenant so a fresh environment is immediately usable.

    Safe to rerun: records are looked up by code/username/SKU and skipped
    when they already exist. Opening stock is posted through the ledger.
    """
    click.echo("START Seeding demo tenant...")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    store = db.session.query(Store).filter_by(org_id=org.id).first()
    if not store:
        store = Store(org_id=org.id, name="Main Store", code="MAIN", sale_number_prefix="MAIN")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    users_seed = [
        ("admin", f"admin@{org_code.lower()}.local", "ADMIN"),
        ("seller", f"seller@{org_code.lower()}.local", "SELLER"),
    ]
    admin = None
    for username, email, role in users_seed:
        user = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if not user:
            user = User(org_id=org.id, store_id=store.id, username=username, email=email, role=role)
            db.session.add(user)
            db.session.commit()
            click.echo(f"PASS Created user: {username} ({role})")
        else:
            click.echo(f"WARN  User '{username}' already exists in org, skipping...")
        if role == "ADMIN":
            admin = user

    for name, method_type in (("Cash", "CASH"), ("Card", "CARD"), ("Store credit", "CREDIT")):
        if not db.session.query(PaymentMethod).filter_by(org_id=org.id, name=name).first():
            db.session.add(PaymentMethod(org_id=org.id, name=name, type=method_type))
    db.session.commit()

    ctx = TenantContext(org_id=org.id, user_id=admin.id)
    products_seed = [
        ("DEMO-COFFEE-12OZ", "Coffee Beans 12oz", 1299, 899, 40, 10),
        ("DEMO-CREAMER-16OZ", "Vanilla Creamer 16oz", 499, 299, 25, 8),
        ("DEMO-SUGAR-2LB", "Cane Sugar 2lb", 699, 449, 12, 6),
        ("DEMO-TEA-BOX", "Black Tea Box", 899, 559, 3, 5),
        ("DEMO-CUP-16OZ-50", "Paper Cups 16oz (50)", 1099, 650, 0, 4),
    ]
    created = 0
    for sku, name, price_cents, cost_cents, opening, min_stock in products_seed:
        if db.session.query(Product).filter_by(org_id=org.id, sku=sku).first():
            continue
        result = actions.create_product(
            ctx,
            name=name,
            sku=sku,
            sale_price_cents=price_cents,
            cost_price_cents=cost_cents,
            min_stock=min_stock,
            initial_stock=opening,
            store_id=store.id,
            description="Seeded demo product",
        )
        if not result.ok:
            _echo_failure(result)
            continue
        created += 1
    click.echo(f"PASS Products created: {created}")

    click.echo("\n" + "="*60)
    click.echo("DONE Demo tenant ready")
    click.echo("="*60)
    click.echo(f"Organization: {org.name} (ID: {org.id})")
    click.echo(f"Store: {store.name} (ID: {store.id})")
    click.echo(f"Gateway headers: X-Org-Id: {org.id}  X-User-Id: {admin.id}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('summary')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--from', 'date_from', help='Inclusive lower bound (ISO-8601)')
@click.option('--to', 'date_to', help='Inclusive upper bound (ISO-8601)')
@with_appcontext
def stock_summary(org_id, product_id, date_from, date_to):
    """Print ledger totals for one product."""
    ctx = _context_for(org_id)
    if ctx is None:
        return

    result = actions.summarize(ctx, product_id, date_from, date_to)
    if not result.ok:
        _echo_failure(result)
        return

    s = result.data
    click.echo(f"Product {s['product_id']}")
    click.echo(f"  IN:          {s['total_in']}")
    click.echo(f"  OUT:         {s['total_out']}")
    click.echo(f"  ADJUSTMENT:  {s['total_adjustment']:+d}")
    click.echo(f"  Computed:    {s['computed_stock']}  ({s['movement_count']} movements)")
    click.echo(f"  Current:     {s['current_stock']}")
    if s["in_sync"] is None:
        click.echo("  In sync:     n/a (date-bounded)")
    else:
        click.echo(f"  In sync:     {'yes' if s['in_sync'] else 'NO'}")


@stock_group.command('reconcile')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def stock_reconcile(org_id):
    """List products whose current_stock disagrees with the ledger."""
    ctx = _context_for(org_id)
    if ctx is None:
        raise SystemExit(1)

    result = actions.find_stock_drift(ctx)
    if not result.ok:
        _echo_failure(result)
        raise SystemExit(1)

    if not result.data:
        click.echo("PASS Ledger and current_stock agree for every product.")
        return

    click.echo("="*70)
    click.echo(f"{'ID':<6} {'Name':<30} {'Current':>9} {'Ledger':>9} {'Drift':>9}")
    click.echo("="*70)
    for row in result.data:
        click.echo(
            f"{row['product_id']:<6} {row['product_name'][:30]:<30} "
            f"{row['current_stock']:>9} {row['computed_stock']:>9} {row['drift']:>+9d}"
        )
    click.echo("="*70)
    click.echo(f"FAIL {len(result.data)} product(s) out of sync")
    raise SystemExit(1)


@stock_group.command('alerts')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--limit', type=int, default=50, show_default=True, help='Maximum rows')
@with_appcontext
def stock_alerts(org_id, limit):
    """List products at or below their minimum stock."""
    ctx = _context_for(org_id)
    if ctx is None:
        return

    result = actions.get_stock_alerts(ctx, limit=limit)
    if not result.ok:
        _echo_failure(result)
        return

    if not result.data:
        click.echo("No low-stock products.")
        return

    for row in result.data:
        click.echo(
            f"{row['severity'].upper():<9} #{row['product_id']:<5} {row['product_name']:<30} "
            f"stock={row['current_stock']} min={row['min_stock']}"
        )


@click.group('sales')
def sales_group():
    """Sale maintenance commands."""


@sales_group.command('mark-overdue')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--as-of', help='Cutoff (ISO-8601); defaults to now')
@with_appcontext
def mark_overdue(org_id, as_of):
    """Flag PENDING sales past their due date as OVERDUE."""
    ctx = _context_for(org_id)
    if ctx is None:
        return

    result = actions.mark_overdue_sales(ctx, as_of)
    if not result.ok:
        _echo_failure(result)
        return
    click.echo(f"PASS Marked {result.data['updated']} sale(s) OVERDUE")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
