# Overview: Flask CLI command groups for bootstrap, catalog seeding and ledger recovery.

# backend/barbertab/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables (idempotent). Production databases should use `flask db upgrade`.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed
#   Idempotently create demo staff, services and products.
# - python -m flask catalog reorder
#   List active products at or below their minimum stock.
#
# Ledger recovery:
# - python -m flask ledger unposted
#   List paid tabs with no income entry (ledger posting failed after settlement).
# - python -m flask ledger repost 42 [--method pix]
#   Post the missing income entry for tab 42.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Service, Staff
from .errors import PipelineError
from .services import catalog_service, settlement_service


DEMO_STAFF = [
    {"name": "Rafael", "role": "Barber", "commission_rate_bps": 4000},
    {"name": "Bruno", "role": "Barber", "commission_rate_bps": 4000},
    {"name": "Marta", "role": "Manager", "commission_rate_bps": 2000},
]

DEMO_SERVICES = [
    {"name": "Corte", "category": "Cabelo", "price_cents": 4500, "duration_minutes": 30},
    {"name": "Barba", "category": "Barba", "price_cents": 3500, "duration_minutes": 30},
    {"name": "Corte + Barba", "category": "Combo", "price_cents": 7000, "duration_minutes": 60},
]

DEMO_PRODUCTS = [
    {"sku": "POM-001", "name": "Pomada Modeladora", "price_cents": 2000, "cost_price_cents": 900, "stock_quantity": 20, "minimum_stock": 5},
    {"sku": "OLE-001", "name": "Óleo para Barba", "price_cents": 3500, "cost_price_cents": 1500, "stock_quantity": 10, "minimum_stock": 3},
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def system_init():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset.')
@with_appcontext
def system_reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


@click.group('catalog')
def catalog_group():
    """Catalog seeding and inspection."""


@catalog_group.command('seed')
@with_appcontext
def catalog_seed():
    """Create demo staff, services and products (skips existing names)."""
    created = 0
    for row in DEMO_STAFF:
        if not db.session.query(Staff).filter_by(name=row["name"]).first():
            db.session.add(Staff(**row))
            created += 1
    for row in DEMO_SERVICES:
        if not db.session.query(Service).filter_by(name=row["name"]).first():
            db.session.add(Service(**row))
            created += 1
    for row in DEMO_PRODUCTS:
        if not db.session.query(Product).filter_by(sku=row["sku"]).first():
            db.session.add(Product(**row))
            created += 1
    db.session.commit()
    click.echo(f"Seeded {created} catalog rows.")


@catalog_group.command('reorder')
@with_appcontext
def catalog_reorder():
    """List products that need reordering."""
    products = catalog_service.list_reorder_candidates()
    if not products:
        click.echo("No products at or below minimum stock.")
        return
    for p in products:
        click.echo(f"{p.id}\t{p.sku or '-'}\t{p.name}\tstock={p.stock_quantity}\tmin={p.minimum_stock}")


@click.group('ledger')
def ledger_group():
    """Ledger recovery commands."""


@ledger_group.command('unposted')
@with_appcontext
def ledger_unposted():
    """List paid tabs without an income entry."""
    tabs = settlement_service.find_unposted_settlements()
    if not tabs:
        click.echo("All settled tabs have ledger entries.")
        return
    for tab in tabs:
        click.echo(f"tab={tab.id}\ttotal_cents={tab.total_cents}\tmethod={tab.payment_method}\tpaid_at={tab.paid_at}")


@ledger_group.command('repost')
@click.argument('tab_id', type=int)
@click.option('--method', default=None, help='Override the payment method recorded at settlement.')
@with_appcontext
def ledger_repost(tab_id, method):
    """Post the missing income entry for a paid tab."""
    try:
        txn = settlement_service.post_settlement_transaction(tab_id, payment_method=method)
    except PipelineError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Posted transaction {txn.id} for tab {tab_id} ({txn.amount_cents} cents).")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
