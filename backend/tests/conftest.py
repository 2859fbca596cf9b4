"""
Pytest fixtures for field sales backend tests.

Provides test database setup, two tenants with admins, reps, products and
customers, and helpers for stock setup and authenticated requests.
"""

import pytest
from fieldsales import create_app
from fieldsales.extensions import db
from fieldsales.models import Company, User, Product, Customer, ROLE_ADMIN, ROLE_SALES
from fieldsales.services import stock_service


# Monday; service-level tests pass report_date so "today" never matters there
MONDAY = "2026-10-19"
TUESDAY = "2026-10-20"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def company_a(db_session):
    """Create Company A (first tenant)."""
    company = Company(name="Company A - Acme Pharma", timezone="UTC", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Create Company B (second tenant)."""
    company = Company(name="Company B - Beta Labs", timezone="UTC", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


def _make_user(db_session, company, username, role):
    user = User(
        company_id=company.id,
        username=username,
        full_name=username.replace("_", " ").title(),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_a(db_session, company_a):
    return _make_user(db_session, company_a, "admin_a", ROLE_ADMIN)


@pytest.fixture(scope='function')
def rep_a(db_session, company_a):
    return _make_user(db_session, company_a, "rep_a", ROLE_SALES)


@pytest.fixture(scope='function')
def rep_a2(db_session, company_a):
    return _make_user(db_session, company_a, "rep_a2", ROLE_SALES)


@pytest.fixture(scope='function')
def admin_b(db_session, company_b):
    return _make_user(db_session, company_b, "admin_b", ROLE_ADMIN)


@pytest.fixture(scope='function')
def rep_b(db_session, company_b):
    return _make_user(db_session, company_b, "rep_b", ROLE_SALES)


def _make_product(db_session, company, name, unit_type="box"):
    product = Product(company_id=company.id, name=name, unit_type=unit_type, is_active=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session, company_a):
    """Create Product in Company A."""
    return _make_product(db_session, company_a, "Amoxicillin 500mg")


@pytest.fixture(scope='function')
def product_a2(db_session, company_a):
    return _make_product(db_session, company_a, "Ibuprofen 200mg", unit_type="carton")


@pytest.fixture(scope='function')
def product_b(db_session, company_b):
    """Create Product in Company B."""
    return _make_product(db_session, company_b, "Beta Syrup")


def _make_customer(db_session, company, name, code):
    customer = Customer(company_id=company.id, full_name=name, customer_code=code, city="Hebron", is_active=True)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_a(db_session, company_a):
    return _make_customer(db_session, company_a, "Al Shifa Pharmacy", "A-001")


@pytest.fixture(scope='function')
def customer_a2(db_session, company_a):
    return _make_customer(db_session, company_a, "Central Clinic", "A-002")


@pytest.fixture(scope='function')
def customer_b(db_session, company_b):
    return _make_customer(db_session, company_b, "Beta Pharmacy", "B-001")


@pytest.fixture(scope='function')
def give_stock(db_session):
    """Bring a rep's balance of a product to an exact quantity through the ledger."""
    def _give(admin, rep, product, quantity):
        return stock_service.set_rep_stock(
            company_id=admin.company_id,
            actor=admin,
            rep_id=rep.id,
            product_id=product.id,
            quantity=quantity,
        )
    return _give


def auth_headers(user) -> dict:
    """Helper to create identity headers as set by the auth gateway."""
    return {'X-User-Id': str(user.id)}


def visit(customer, status="visited", **extra) -> dict:
    """Helper to build one visit entry of a report payload."""
    entry = {"customer_id": customer.id, "status": status}
    if status == "not_visited":
        entry.setdefault("reason", "Closed")
    entry.update(extra)
    return entry


def sample(product, quantity, customer=None, sample_id=None) -> dict:
    """Helper to build one sample entry of a report payload."""
    entry = {
        "product_id": product.id,
        "quantity": quantity,
        "kind": "customer" if customer is not None else "personal",
    }
    if customer is not None:
        entry["customer_id"] = customer.id
    if sample_id is not None:
        entry["id"] = sample_id
    return entry
