# Overview: Flask CLI command groups for bootstrap, stock audit, and cleanup recovery.

# backend/fieldsales/cli.py
# Commands Legend (run from the backend directory):
# - Set FLASK_APP to "fieldsales:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use flask db upgrade for migrated deployments).
# - python -m flask system create-company --name "Acme Pharma" --admin admin
#   Create a company (tenant) with its first admin user.
#
# Stock audit:
# - python -m flask stock verify [--company-id 1]
#   Compare every cached balance with its ledger replay; exits 1 on drift.
#
# Customer cleanup recovery:
# - python -m flask customers resume-cleanup [--company-id 1]
#   Finish customer deletions interrupted mid-cascade.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Company, User, ROLE_ADMIN
from .services import stock_service, customer_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for a fresh database."""
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database ready.")


@system_group.command('create-company')
@click.option('--name', required=True, help='Company name')
@click.option('--timezone', default=None, help='IANA timezone for report dates')
@click.option('--admin', 'admin_username', required=True, help='Username of the first admin')
@with_appcontext
def create_company_cli(name, timezone, admin_username):
    """Create a company (tenant) and its first admin user."""
    company = Company(name=name, timezone=timezone, is_active=True)
    db.session.add(company)
    db.session.flush()

    admin = User(
        company_id=company.id,
        username=admin_username,
        full_name=admin_username,
        role=ROLE_ADMIN,
        is_active=True,
    )
    db.session.add(admin)
    db.session.commit()
    click.echo(f"PASS Created company {company.name} (ID: {company.id}) with admin {admin.username} (ID: {admin.id})")


@click.group('stock')
def stock_group():
    """Rep stock audit commands."""


@stock_group.command('verify')
@click.option('--company-id', type=int, help='Limit to one company')
@with_appcontext
def verify_stock(company_id):
    """Compare balances with ledger replay."""
    drift = stock_service.verify_balances(company_id)
    if not drift:
        click.echo("PASS All balances match the ledger.")
        return

    click.echo(f"FAIL {len(drift)} balance(s) differ from the ledger:")
    for row in drift:
        click.echo(
            f"  company={row['company_id']} rep={row['rep_id']} product={row['product_id']} "
            f"balance={row['balance']} ledger={row['ledger_sum']}"
        )
    raise SystemExit(1)


@click.group('customers')
def customers_group():
    """Customer maintenance commands."""


@customers_group.command('resume-cleanup')
@click.option('--company-id', type=int, help='Limit to one company')
@with_appcontext
def resume_cleanup(company_id):
    """Finish interrupted customer deletions from their saved cursor."""
    jobs = customer_service.resume_customer_cleanups(company_id)
    if not jobs:
        click.echo("PASS No interrupted cleanups.")
        return
    for job in jobs:
        click.echo(
            f"PASS Customer {job.customer_id} (company {job.company_id}): "
            f"{job.reports_processed} report(s) cleaned, {job.reports_deleted} deleted"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(customers_group)
