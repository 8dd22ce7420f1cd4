"""
Pytest fixtures for medbill backend tests.

Provides the application on in-memory SQLite, a wiped database per test,
and small factories for medicines, batches, customers and the invoice
counter.
"""

from datetime import timedelta

import pytest

from medbill import create_app
from medbill.extensions import db
from medbill.models import Medicine, Customer
from medbill.services import inventory_service, credit_service, sequence_service
from medbill.time_utils import today


USER_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_PREFIX': 'INV',
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
    db.session.rollback()
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def invoice_sequence(db_session):
    """Counter for fiscal year 2024-25, nothing issued yet."""
    return sequence_service.init_invoice_sequence(prefix="INV", fiscal_year="2024-25")


@pytest.fixture(scope='function')
def make_medicine(db_session):
    def _make(name="Paracetamol 500", tax_rate=12, is_controlled=False, **kwargs) -> Medicine:
        return inventory_service.create_medicine(
            name=name,
            tax_rate_percent=tax_rate,
            is_controlled=is_controlled,
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def make_batch(db_session, make_medicine):
    """Batch of a fresh medicine; pass medicine= to reuse one."""
    counter = {"n": 0}

    def _make(
        medicine=None,
        *,
        quantity=100,
        price_cents=1000,
        pricing_mode="INCLUSIVE",
        tax_rate=12,
        is_controlled=False,
        expiry_date=None,
    ):
        counter["n"] += 1
        if medicine is None:
            medicine = make_medicine(
                name=f"Medicine {counter['n']}",
                tax_rate=tax_rate,
                is_controlled=is_controlled,
            )
        return inventory_service.create_batch(
            medicine_id=medicine.id,
            batch_number=f"B{counter['n']:03d}",
            expiry_date=expiry_date or today() + timedelta(days=365),
            selling_price_cents=price_cents,
            quantity=quantity,
            pricing_mode=pricing_mode,
            user_id=USER_ID,
        )
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Ramesh Kumar", credit_limit_cents=500000, balance_cents=0) -> Customer:
        customer = credit_service.create_customer(name=name, credit_limit_cents=credit_limit_cents)
        if balance_cents:
            # Opening balance goes through the ledger so the two stay equal
            credit_service.record_movement(
                customer.id, None, credit_service.ENTRY_ADJUSTMENT, balance_cents, note="Opening balance"
            )
            db.session.commit()
        return customer
    return _make


def reload(model, pk):
    """Drop cached state and read the row again."""
    db.session.expire_all()
    return db.session.get(model, pk)


def auth_headers(user_id: int = USER_ID) -> dict:
    return {'X-User-Id': str(user_id)}
