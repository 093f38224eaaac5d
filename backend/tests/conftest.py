"""
Pytest fixtures for ChainTrack backend tests.

Provides test database setup, supply-chain party fixtures, products, and
test client helpers.
"""

import pytest
from chaintrack import create_app
from chaintrack.extensions import db
from chaintrack.models import User, Product
from chaintrack.models.accounts import ROLE_ADMIN, ROLE_BUYER, ROLE_PRODUCER, ROLE_RESELLER
from chaintrack.services import stock_service, unit_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUTHENTICITY_SECRET': 'test-secret',
        'QR_PAYLOAD_PREFIX': 'LS',
        'SERIAL_RANGE_START': 100000,
        'SERIAL_RANGE_END': 100999,
        'MAX_SERIAL_BATCH': 100,
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
        # Drop identities left over from earlier tests (fixed keys like serial_settings.id=1)
        db.session.remove()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


def _make_user(db_session, name, email, role):
    user = User(name=name, email=email, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def producer(db_session):
    return _make_user(db_session, "Acme Tools", "producer@acme.test", ROLE_PRODUCER)


@pytest.fixture(scope='function')
def other_producer(db_session):
    return _make_user(db_session, "Beta Works", "producer@beta.test", ROLE_PRODUCER)


@pytest.fixture(scope='function')
def reseller(db_session):
    return _make_user(db_session, "Corner Shop", "shop@corner.test", ROLE_RESELLER)


@pytest.fixture(scope='function')
def other_reseller(db_session):
    return _make_user(db_session, "High Street", "shop@high.test", ROLE_RESELLER)


@pytest.fixture(scope='function')
def buyer(db_session):
    return _make_user(db_session, "Dana Buyer", "dana@buyer.test", ROLE_BUYER)


@pytest.fixture(scope='function')
def other_buyer(db_session):
    return _make_user(db_session, "Eli Buyer", "eli@buyer.test", ROLE_BUYER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Admin", "admin@chaintrack.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def serialized_product(db_session, producer):
    """Serialized product (one unit row per item)."""
    product = Product(producer_id=producer.id, name="Cordless Drill", images=[], is_serialized=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def bulk_product(db_session, producer):
    """Bulk product (quantity counters)."""
    product = Product(producer_id=producer.id, name="Wood Screws (box)", images=[], is_serialized=False)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def units_at_reseller(db_session, serialized_product, producer, reseller):
    """Three units produced and dispatched to the reseller, returned as a list (FIFO order)."""
    units = unit_service.produce_units(serialized_product.id, producer.id, 3)
    unit_service.dispatch_units([u.id for u in units], producer.id, reseller.id)
    return units


@pytest.fixture(scope='function')
def bulk_at_reseller(db_session, bulk_product, producer, reseller):
    """Reseller holds 5 boxes of the bulk product."""
    stock_service.grant_stock(bulk_product.id, producer.id, 10)
    stock_service.transfer_stock(bulk_product.id, producer.id, reseller.id, 5)
    return bulk_product


@pytest.fixture(scope='function')
def headers_for():
    """Build acting-user headers for any user."""
    def _headers(user) -> dict:
        return {'X-User-Id': str(user.id)}
    return _headers


@pytest.fixture(scope='function')
def producer_headers(producer, headers_for):
    return headers_for(producer)


@pytest.fixture(scope='function')
def reseller_headers(reseller, headers_for):
    return headers_for(reseller)


@pytest.fixture(scope='function')
def buyer_headers(buyer, headers_for):
    return headers_for(buyer)


@pytest.fixture(scope='function')
def admin_headers(admin, headers_for):
    return headers_for(admin)
