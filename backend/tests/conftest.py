"""
Pytest fixtures for MedPOS backend tests.

Provides test database setup, owner/drawer fixtures, and cart helpers.
"""

import pytest

from medpos import create_app
from medpos.config import TestConfig
from medpos.extensions import db
from medpos.services import drawer_service, shift_service
from medpos.services.cart import CatalogItem


OWNER_A = "PRO-A"
OWNER_B = "PRO-B"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def drawer(db_session):
    """Drawer "Main" owned by OWNER_A."""
    return drawer_service.create_drawer(OWNER_A, "Main")


@pytest.fixture(scope='function')
def open_session(drawer):
    """Open session on the Main drawer with a zero float."""
    return shift_service.start_shift(drawer.id, opening_balance_cents=0)


@pytest.fixture
def consultation():
    return CatalogItem(id="SVC-CONSULT", name="Consultation", price_cents=100000, insurance_eligible=True, reimbursement_rate=80)


@pytest.fixture
def bandage():
    return CatalogItem(id="SUP-BANDAGE", name="Bandage", price_cents=50000)


@pytest.fixture
def headers():
    """Owner context headers for OWNER_A."""
    return {'X-Owner-Id': OWNER_A}


@pytest.fixture
def other_headers():
    """Owner context headers for a different professional."""
    return {'X-Owner-Id': OWNER_B}
