# Overview: Flask CLI command groups for bootstrap, demo data and manual review.

# backend/medhub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent). Production databases should use `flask db upgrade`.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all staff and admin accounts.
# - python -m flask users create-admin --name "Ops" --email admin@medhub.local --password "Password123!"
#   Create a platform admin (prompts if options are omitted).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Insert demo catalog items and two verified providers with offerings.
#
# Prescriptions:
# - python -m flask prescriptions review 12 verified
#   Verify or reject a pending prescription / test order.
#
# Orders:
# - python -m flask orders cancel-timed-out
#   Cancel unpaid orders stuck awaiting review (48h) or payment (24h); run from cron.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .location import load_locations
from .models import CatalogItem, Provider, ProviderOffering, User
from .models.auth import ROLE_ADMIN
from .models.catalog import (
    KIND_DIAGNOSTIC,
    KIND_DIAGNOSTIC_PACKAGE,
    KIND_MEDICATION,
    PROVIDER_LAB,
    PROVIDER_PHARMACY,
    VERIFICATION_VERIFIED,
)
from .services.auth_service import create_user
from .services.checkout_service import cancel_timed_out_orders
from .services.prescription_service import REVIEW_OUTCOMES, review_prescription
from .time_utils import utcnow


DEMO_ITEMS = [
    {"name": "Paracetamol", "kind": KIND_MEDICATION, "category": "Analgesic",
     "strength": "500mg", "form": "tablet", "prescription_required": False},
    {"name": "Amoxicillin", "kind": KIND_MEDICATION, "category": "Antibiotic",
     "strength": "500mg", "form": "capsule", "prescription_required": True},
    {"name": "Artemether/Lumefantrine", "kind": KIND_MEDICATION, "category": "Antimalarial",
     "strength": "80/480mg", "form": "tablet", "prescription_required": False},
    {"name": "Full Blood Count", "kind": KIND_DIAGNOSTIC, "category": "Haematology",
     "prescription_required": True, "prep_instructions": "No fasting required"},
    {"name": "Fasting Blood Sugar", "kind": KIND_DIAGNOSTIC, "category": "Chemistry",
     "prescription_required": False, "prep_instructions": "Fast for 8-10 hours"},
    {"name": "Executive Health Package", "kind": KIND_DIAGNOSTIC_PACKAGE, "category": "Wellness",
     "prescription_required": False},
]


def _ward(state: str, lga: str, ward: str) -> dict:
    for s in load_locations():
        if s["state"] != state:
            continue
        for l in s["lgas"]:
            if l["name"] != lga:
                continue
            for w in l["wards"]:
                if w["name"] == ward:
                    return {"state": state, "lga": lga, "ward": ward,
                            "latitude": w["latitude"], "longitude": w["longitude"]}
    raise click.ClickException(f"Unknown ward {state}/{lga}/{ward}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    click.echo("START Initializing MedHub schema...")
    db.create_all()
    click.echo("PASS Tables ready. Create an admin with 'python -m flask users create-admin'.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Provider':<9} {'Name':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        provider_str = str(user.provider_id) if user.provider_id else "-"
        click.echo(f"{user.id:<5} {provider_str:<9} {user.name:<20} {user.email:<30} {active_str:<8} {user.role}")
    click.echo("="*90 + "\n")


@users_group.command('create-admin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin_cli(name, email, password):
    """Create a platform admin account."""
    try:
        user = create_user(name=name, email=email, password=password, role=ROLE_ADMIN)
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created admin {user.email} (ID: {user.id})")


@click.group('catalog')
def catalog_group():
    """Catalog and provider demo data."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Insert demo items, a verified pharmacy in Ikeja and a verified lab in
    Lekki, each with offerings. Skips if the catalog already has items.
    """
    if db.session.query(CatalogItem).count():
        click.echo("SKIP Catalog already has items")
        return

    items = [CatalogItem(**data) for data in DEMO_ITEMS]
    db.session.add_all(items)

    now = utcnow()
    pharmacy = Provider(
        name="HealthPlus Alausa", provider_type=PROVIDER_PHARMACY, address="12 Obafemi Awolowo Way",
        phone="+2348012345678", email="alausa@healthplus.example",
        verification_status=VERIFICATION_VERIFIED, verified_at=now, is_active=True,
        home_collection_available=True, operating_hours="08:00-20:00",
        **_ward("Lagos", "Ikeja", "Alausa"),
    )
    lab = Provider(
        name="Clina Diagnostics Lekki", provider_type=PROVIDER_LAB, address="5 Admiralty Way",
        phone="+2348098765432", email="lekki@clina.example",
        verification_status=VERIFICATION_VERIFIED, verified_at=now, is_active=True,
        home_collection_available=True, operating_hours="09:00-17:00",
        **_ward("Lagos", "Eti-Osa", "Lekki"),
    )
    db.session.add_all([pharmacy, lab])
    db.session.flush()

    by_name = {item.name: item for item in items}
    offerings = [
        (pharmacy, "Paracetamol", 50_000, 200),
        (pharmacy, "Amoxicillin", 250_000, 60),
        (pharmacy, "Artemether/Lumefantrine", 450_000, 40),
        (lab, "Full Blood Count", 800_000, None),
        (lab, "Fasting Blood Sugar", 350_000, None),
        (lab, "Executive Health Package", 4_500_000, None),
    ]
    for provider, item_name, price_kobo, stock in offerings:
        db.session.add(ProviderOffering(
            provider_id=provider.id,
            item_id=by_name[item_name].id,
            price_kobo=price_kobo,
            stock=stock,
            available=True,
        ))

    db.session.commit()
    click.echo(f"PASS Seeded {len(items)} items, 2 providers, {len(offerings)} offerings")


@click.group('prescriptions')
def prescriptions_group():
    """Manual prescription / test-order review."""


@prescriptions_group.command('review')
@click.argument('prescription_id', type=int)
@click.argument('status', type=click.Choice(REVIEW_OUTCOMES))
@with_appcontext
def review_cli(prescription_id, status):
    """Verify or reject a pending record; verification releases its orders, rejection cancels them."""
    try:
        result = review_prescription(prescription_id, status)
    except ServiceError as e:
        raise click.ClickException(e.message)
    released = result["released_order_ids"]
    cancelled = result["cancelled_order_ids"]
    click.echo(
        f"PASS Prescription {prescription_id} {status}; "
        f"released orders: {released or 'none'}; cancelled orders: {cancelled or 'none'}"
    )


@click.group('orders')
def orders_group():
    """Order housekeeping."""


@orders_group.command('cancel-timed-out')
@with_appcontext
def cancel_timed_out_cli():
    """Cancel timed-out unpaid orders and release their stock."""
    cancelled = cancel_timed_out_orders()
    click.echo(f"PASS Cancelled {len(cancelled)} timed-out orders: {cancelled or 'none'}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(prescriptions_group)
    app.cli.add_command(orders_group)
