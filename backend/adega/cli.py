# Overview: Flask CLI command groups for bootstrap, catalog seeding, and stock maintenance.

# backend/adega/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (existing data is kept).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed
#   Idempotently create the default categories (prepared-drink ones included).
#
# Stock ledger:
# - python -m flask stock adjust --reason "breakage" <product_id> -- -3
#   Manual adjustment through the ledger (clamped at zero, logged).
# - python -m flask stock logs [--product-id <id>] [--limit 50]
#   Show recent ledger entries, newest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Product
from .services import stock_service
from .validation import ValidationError, NotFoundError


DEFAULT_CATEGORIES = [
    # Stock-controlled
    "CERVEJAS",
    "DESTILADOS",
    "VINHOS",
    "REFRIGERANTES",
    "ENERGETICOS",
    "AGUAS",
    "GELO",
    "PETISCOS",
    # Prepared on demand (stock-exempt by name)
    "CAIPIRINHAS",
    "DOSES",
    "BATIDAS",
    "COPAO",
    "DRINKS ESPECIAIS",
    "CAIPI ICES",
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Database tables ready")


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

    click.echo("PASS Database reset complete")


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap commands."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """
    Create the default categories if they do not exist yet.

    Matching is by exact name; existing categories are left untouched.
    """
    existing = {name for (name,) in db.session.query(Category.name).all()}
    created = 0
    for index, name in enumerate(DEFAULT_CATEGORIES):
        if name in existing:
            continue
        db.session.add(Category(name=name, sort_order=index, is_active=True))
        created += 1
    db.session.commit()

    exempt = [n for n in DEFAULT_CATEGORIES if stock_service.is_prepared_category_name(n)]
    click.echo(f"PASS Created {created} categories ({len(DEFAULT_CATEGORIES) - created} already present)")
    click.echo(f"INFO Stock-exempt categories: {', '.join(exempt)}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and adjustment."""


@stock_group.command('adjust')
@click.argument('product_id')
@click.argument('delta', type=int)
@click.option('--reason', required=True, help='Why the stock changed (logged)')
@with_appcontext
def adjust_stock_cli(product_id, delta, reason):
    """
    Apply a manual stock adjustment.

    Example:
        flask stock adjust 3f2c... 12 --reason "purchase received"
        flask stock adjust --reason "breakage" 3f2c... -- -2
    """
    try:
        entry = stock_service.adjust_stock(product_id, delta, reason)
    except (ValidationError, NotFoundError) as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS {product_id}: {entry.previous_stock} -> {entry.new_stock} "
        f"(requested {entry.change:+d}, reason: {entry.reason})"
    )


@stock_group.command('logs')
@click.option('--product-id', default=None, help='Only this product')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def stock_logs_cli(product_id, limit):
    """List recent stock ledger entries."""
    logs = stock_service.list_stock_logs(product_id=product_id, limit=limit)
    if not logs:
        click.echo("No stock movements found.")
        return

    names = {p.id: p.name for p in db.session.query(Product).all()}

    click.echo("\n" + "="*100)
    click.echo(f"{'When':<22} {'Product':<30} {'Prev':>6} {'New':>6} {'Change':>7}  {'Reason'}")
    click.echo("="*100)
    for entry in logs:
        when = entry.created_at.strftime("%Y-%m-%d %H:%M:%S") if entry.created_at else "-"
        name = names.get(entry.product_id, entry.product_id)[:30]
        click.echo(
            f"{when:<22} {name:<30} {entry.previous_stock:>6} {entry.new_stock:>6} "
            f"{entry.change:>+7d}  {entry.reason}"
        )
    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
