"""
Pytest fixtures for admission engine tests.

Provides test database setup, tenant fixtures, and test client.
"""

import pytest

from admission_engine import create_app
from admission_engine.extensions import db
from admission_engine.models import Customer, Organization, PaymentMethod, PriceControlSettings


APPROVER_ID = 900
SELLER_ID = 100


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
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
def org(db_session):
    """Organization A (BRL tenant)."""
    org = Organization(name="Org A - Loja Centro", code="ACME", currency_code="BRL", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    """Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", currency_code="USD", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def customer(db_session, org):
    """Customer with a R$ 1.000,00 credit limit."""
    customer = Customer(org_id=org.id, name="Maria Silva", document="123.456.789-00", credit_limit_cents=100000)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def boleto(db_session, org):
    """Configured credit-bearing payment method."""
    method = PaymentMethod(org_id=org.id, code="boleto", label="Boleto Bancário", requires_credit_review=True)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def price_settings(db_session, org):
    """Active price control: 10% seller cap, one approver."""
    settings = PriceControlSettings(
        org_id=org.id,
        is_active=True,
        max_seller_discount_percent=10.0,
        min_value_without_approval_cents=0,
        approver_user_ids=[APPROVER_ID],
    )
    db_session.add(settings)
    db_session.commit()
    return settings


def item(original, final=None, quantity=1, minimum=None, requires_stock=False, description="Item"):
    """Checkout item payload helper."""
    return {
        "description": description,
        "quantity": quantity,
        "original_price_cents": original,
        "unit_price_cents": original if final is None else final,
        "minimum_price_cents": minimum,
        "requires_stock": requires_stock,
    }


def actor_headers(org_id: int, actor_id: int = SELLER_ID) -> dict:
    """Helper to create identity headers."""
    return {'X-Actor-Id': str(actor_id), 'X-Org-Id': str(org_id)}
