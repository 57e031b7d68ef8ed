"""
Pytest fixtures for shopledger backend tests.

Provides the app on an in-memory database, a clean database per test, the Flask
test client, and a device engine wired to the same app through httpx.
"""

import httpx
import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.offline.engine import ReconciliationEngine
from shopledger.offline.store import DeviceStore
from shopledger.offline.transport import ApiClient


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def client(app, db_session):
    """Create test client."""
    return app.test_client()


class SwitchableTransport(httpx.BaseTransport):
    """WSGI transport into the app that can be switched to fail like a dropped network."""

    def __init__(self, app):
        self.inner = httpx.WSGITransport(app=app)
        self.offline = False
        # requests hang past the client timeout instead of failing fast
        self.timing_out = False
        self.sent = []

    def handle_request(self, request):
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if self.timing_out:
            raise httpx.ReadTimeout("timed out waiting for response", request=request)
        self.sent.append((request.method, request.url.path))
        return self.inner.handle_request(request)


@pytest.fixture(scope='function')
def transport(app):
    return SwitchableTransport(app)


@pytest.fixture(scope='function')
def device_store(tmp_path):
    store = DeviceStore(str(tmp_path / "device.sqlite3"))
    yield store
    store.close()


@pytest.fixture(scope='function')
def engine(db_session, transport, device_store):
    """Device engine talking to the test app; starts online with an empty cache."""
    api = ApiClient("http://testserver", transport=transport)
    engine = ReconciliationEngine(api=api, store=device_store)
    yield engine
    api.close()


@pytest.fixture(scope='function')
def make_product(client):
    """Create a product over the API and return its JSON."""
    def _make(name="Ice", initial_qty=0, **fields):
        payload = {"name": name, "initial_qty": initial_qty, **fields}
        res = client.post("/api/inventory/products", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _make
