# Overview: Flask CLI command groups for catalog bootstrap and stock inspection.

# backend/boutique/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "boutique:create_app".
# - Use: python -m flask <group> <command> [options]
#
# Catalog:
# - python -m flask products create --name "Linen Shirt" --price-cents 450000
#   Create an active product.
# - python -m flask products set-status --product-id 1 inactive
#   Hide a product from checkout (stock rows are kept).
# - python -m flask products list
#   List products with headline availability.
#
# Stock:
# - python -m flask inventory set --product-id 1 --quantity 20 [--size M] [--color Red]
#   Set one slot's stock_quantity (reserved units are preserved).
# - python -m flask inventory show --product-id 1
#   Show every stock row with stock, reserved and available.
# - python -m flask inventory movements --product-id 1 --limit 20
#   Show recent committed deductions for reconciliation.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, StockMovement
from .services import availability_service, stock_ledger
from .services.catalog_service import create_product, set_status, CatalogError


@click.group('products')
def products_group():
    """Catalog bootstrap commands."""


@products_group.command('create')
@click.option('--name', prompt=True, help='Product name')
@click.option('--price-cents', type=int, prompt=True, help='Price in cents')
@click.option('--sale-price-cents', type=int, default=None, help='Flash sale price in cents')
@click.option('--description', default=None)
@with_appcontext
def create_product_cmd(name, price_cents, sale_price_cents, description):
    """Create a product."""
    try:
        product = create_product(
            name,
            price_cents,
            description=description,
            sale_price_cents=sale_price_cents,
        )
    except CatalogError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")


@products_group.command('set-status')
@click.option('--product-id', type=int, required=True)
@click.argument('status', type=click.Choice(['active', 'inactive']))
@with_appcontext
def set_status_cmd(product_id, status):
    """Activate or deactivate a product."""
    try:
        product = set_status(product_id, status)
    except CatalogError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Product {product.id} is now {product.status}")


@products_group.command('list')
@with_appcontext
def list_products():
    """List products with headline availability."""
    products = db.session.query(Product).order_by(Product.id).all()
    if not products:
        click.echo("No products found.")
        return

    available = availability_service.get_bulk_available([p.id for p in products])

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Price':<12} {'Status':<10} {'Available'}")
    click.echo("="*80)
    for product in products:
        qty = available.get(product.id)
        qty_str = "untracked" if qty is None else str(qty)
        click.echo(f"{product.id:<5} {product.name[:30]:<30} {product.price_cents:<12} {product.status:<10} {qty_str}")
    click.echo("")


@click.group('inventory')
def inventory_group():
    """Stock configuration and inspection commands."""


@inventory_group.command('set')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True, help='New stock_quantity for the slot')
@click.option('--size', default=None, help='Size (S, M, L, XL, 2XL ... 5XL)')
@click.option('--color', default=None)
@with_appcontext
def set_stock_cmd(product_id, quantity, size, color):
    """Set one slot's stock quantity."""
    if db.session.get(Product, product_id) is None:
        raise click.ClickException(f"Product {product_id} not found")
    try:
        row = stock_ledger.set_stock(product_id, quantity, size=size, color=color)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(
        f"PASS {row.granularity} slot size={row.size or '-'} color={row.color or '-'}: "
        f"stock={row.stock_quantity} reserved={row.reserved_quantity}"
    )


@inventory_group.command('show')
@click.option('--product-id', type=int, required=True)
@with_appcontext
def show_stock(product_id):
    """Show every stock row for a product."""
    summary = availability_service.stock_summary(product_id)
    if not summary["tracked"]:
        click.echo(f"Product {product_id} has no stock rows (untracked).")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Size':<6} {'Color':<20} {'Stock':<8} {'Reserved':<10} {'Available'}")
    click.echo("="*70)
    for row in summary["rows"]:
        click.echo(
            f"{row['size'] or '-':<6} {row['color'] or '-':<20} "
            f"{row['stock_quantity']:<8} {row['reserved_quantity']:<10} {row['available']}"
        )
    click.echo(f"\nHeadline available: {summary['available']}")


@inventory_group.command('movements')
@click.option('--product-id', type=int, required=True)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_movements(product_id, limit):
    """Show recent committed deductions."""
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    if not movements:
        click.echo("No movements found.")
        return
    for m in movements:
        click.echo(
            f"{m.created_at} size={m.size or '-'} color={m.color or '-'} "
            f"delta={m.quantity_delta} order={m.order_id or '-'} seller={m.seller_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
