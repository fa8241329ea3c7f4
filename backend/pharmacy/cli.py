# Overview: Flask CLI command groups for seeding, inspection, and commit reconciliation.

# backend/pharmacy/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask medicines list [--search para]
#   List medicines ordered by name.
# - python -m flask medicines add --name "Paracetamol" --quantity 20 --price 1.50 --expiry 2027-01-31 --actor admin
#   Add a medicine.
# - python -m flask medicines seed-demo
#   Add a handful of demo medicines (skips names that already exist).
#
# Alerts:
# - python -m flask alerts show [--as-of 2026-01-31]
#   Print low-stock and expiring-soon medicines.
#
# Sales journal and reconciliation:
# - python -m flask sales list --limit 20
#   List recent sales, newest first.
# - python -m flask sales unfinished
#   List sales whose stock deductions are PENDING or FAILED.
# - python -m flask sales resume 42 --actor admin
#   Apply PENDING deductions of an interrupted checkout.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .errors import PartialCommitError, PharmacyError
from .models import Medicine
from .money import format_cents
from .services import journal_service, sale_service, stock_service
from .services.alert_service import current_alerts, days_to_expiry
from .time_utils import parse_iso_date, to_utc_z, today_utc


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask medicines seed-demo' for sample stock.")


@click.group('medicines')
def medicines_group():
    """Stock ledger inspection and bootstrap."""


@medicines_group.command('list')
@click.option('--search', help='Case-insensitive name filter')
@with_appcontext
def list_medicines_cmd(search):
    """List medicines with quantity, price and expiry."""
    medicines = stock_service.list_medicines(search=search)

    if not medicines:
        click.echo("No medicines found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Qty':>6} {'Price':>10} {'Expiry':<12} {'Updated by'}")
    click.echo("="*80)

    for m in medicines:
        expiry = m.expiry_date.isoformat() if m.expiry_date else "-"
        click.echo(f"{m.id:<5} {m.name:<30} {m.quantity:>6} {format_cents(m.price_cents):>10} {expiry:<12} {m.updated_by or '-'}")

    click.echo("="*80 + "\n")


@medicines_group.command('add')
@click.option('--name', required=True, help='Medicine name')
@click.option('--quantity', type=int, default=0, show_default=True, help='Units in stock')
@click.option('--price', default='0', show_default=True, help='Unit price, e.g. 1.50')
@click.option('--expiry', help='Expiry date (YYYY-MM-DD)')
@click.option('--actor', default='cli', show_default=True, help='Actor id stamped into updated_by')
@with_appcontext
def add_medicine_cmd(name, quantity, price, expiry, actor):
    """Add a medicine to the ledger."""
    try:
        medicine_id = stock_service.create_medicine(
            {"name": name, "quantity": quantity, "price": price, "expiry_date": expiry},
            actor,
        )
    except PharmacyError as e:
        raise click.ClickException(f"FAIL {e}")

    click.echo(f"PASS Created medicine: {name} (ID: {medicine_id})")


@medicines_group.command('seed-demo')
@click.option('--actor', default='cli', show_default=True, help='Actor id stamped into updated_by')
@with_appcontext
def seed_demo_cmd(actor):
    """
    Add demo medicines covering each alert case: healthy stock, low stock,
    out of stock, expiring soon, already expired and no expiry date.
    """
    today = today_utc()
    demo = [
        ("Paracetamol 500mg", 120, "1.50", today + timedelta(days=400)),
        ("Amoxicillin 250mg", 8, "4.20", today + timedelta(days=200)),
        ("Ibuprofen 200mg", 0, "2.10", today + timedelta(days=300)),
        ("Cetirizine 10mg", 45, "3.00", today + timedelta(days=30)),
        ("Omeprazole 20mg", 30, "5.75", today - timedelta(days=5)),
        ("Saline Solution 0.9%", 60, "0.99", None),
    ]

    created = 0
    for name, quantity, price, expiry in demo:
        exists = db.session.query(Medicine.id).filter_by(name=name).first()
        if exists:
            click.echo(f"WARN  Medicine '{name}' already exists, skipping...")
            continue
        stock_service.create_medicine(
            {
                "name": name,
                "quantity": quantity,
                "price": price,
                "expiry_date": expiry.isoformat() if expiry else None,
            },
            actor,
        )
        created += 1
        click.echo(f"PASS Created medicine: {name}")

    click.echo(f"DONE Seeded {created} medicine(s)")


@click.group('alerts')
def alerts_group():
    """Stock alert inspection."""


@alerts_group.command('show')
@click.option('--as-of', help='Evaluate against this date instead of today (YYYY-MM-DD)')
@with_appcontext
def show_alerts_cmd(as_of):
    """Print low-stock and expiring-soon medicines."""
    try:
        today = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="--as-of")

    report = current_alerts(today)

    click.echo(f"\nLOW STOCK ({len(report.low_stock)})")
    for m in report.low_stock:
        click.echo(f"  {m.id:<5} {m.name:<30} qty={m.quantity}")

    click.echo(f"\nEXPIRING SOON ({len(report.expiring_soon)}) as of {report.evaluated_on.isoformat()}")
    for m in report.expiring_soon:
        days = days_to_expiry(m.expiry_date, report.evaluated_on)
        status = "EXPIRED" if days < 0 else f"{days} day(s)"
        click.echo(f"  {m.id:<5} {m.name:<30} expires={m.expiry_date.isoformat()} ({status})")
    click.echo("")


@click.group('sales')
def sales_group():
    """Sales journal inspection and commit reconciliation."""


@sales_group.command('list')
@click.option('--limit', type=int, default=20, show_default=True, help='Max sales to show')
@with_appcontext
def list_sales_cmd(limit):
    """List recent sales, newest first."""
    sales = journal_service.list_sales(limit=limit)

    if not sales:
        click.echo("No sales found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Timestamp':<22} {'Cashier':<20} {'Units':>6} {'Total':>10}")
    click.echo("="*80)

    for sale in sales:
        click.echo(
            f"{sale.id:<6} {to_utc_z(sale.timestamp):<22} {sale.cashier_id:<20} "
            f"{sale.quantity_sold:>6} {format_cents(sale.total_cents):>10}"
        )

    click.echo("="*80 + "\n")


@sales_group.command('unfinished')
@with_appcontext
def unfinished_sales_cmd():
    """List sales with PENDING or FAILED stock deductions."""
    unfinished = sale_service.list_unfinished_commits()

    if not unfinished:
        click.echo("PASS No unfinished sales.")
        return

    for entry in unfinished:
        click.echo(
            f"WARN  Sale {entry['sale_id']} by {entry['cashier_id']} at {entry['timestamp']}: "
            f"{len(entry['pending'])} pending, {len(entry['failed'])} failed"
        )
        for row in entry["failed"]:
            click.echo(f"      FAILED medicine {row['medicine_id']} x{row['quantity']}: {row['failure_reason']}")


@sales_group.command('resume')
@click.argument('sale_id', type=int)
@click.option('--actor', default='cli', show_default=True, help='Actor id stamped into updated_by')
@with_appcontext
def resume_sale_cmd(sale_id, actor):
    """Apply PENDING deductions left by an interrupted checkout."""
    try:
        result = sale_service.resume_commit(sale_id, actor)
    except PartialCommitError as e:
        if e.failed:
            raise click.ClickException(
                f"FAIL Sale {sale_id} still has {len(e.failed)} failed deduction(s); reconcile the ledger manually"
            )
        raise click.ClickException(
            f"FAIL Sale {sale_id} still has {len(e.pending)} pending deduction(s); the database refused the write, try again"
        )
    except PharmacyError as e:
        raise click.ClickException(f"FAIL {e}")

    click.echo(f"PASS Sale {sale_id}: {result['applied']} deduction(s) applied")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(medicines_group)
    app.cli.add_command(alerts_group)
    app.cli.add_command(sales_group)
