import pytest
from fastapi.testclient import TestClient

from pos_service.changes import ChangeFeed
from pos_service.config import Settings
from pos_service.database import Database
from pos_service.main import create_app
from pos_service.repository import OrderRepository

CRON_SECRET = "test-cron-secret"


def role_headers(role, user_id=1):
    return {"x-role": role, "x-user-id": str(user_id)}


def item(name="Hamburguesa clásica", price=5000, qty=1, station="PLANCHA", **extra):
    payload = {"name_snapshot": name, "price_cents_snapshot": price, "qty": qty, "station": station}
    payload.update(extra)
    return payload


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'pos.db'}",
        environment="test",
        cron_secret=CRON_SECRET,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers():
    return role_headers


@pytest.fixture
def create_order(client):
    """Create an order through the API and return the response body"""
    def _create(items=None, order_type="TAKEOUT", headers=None, **fields):
        body = {"type": order_type, "items": items if items is not None else [item()]}
        body.update(fields)
        response = client.post("/orders", json=body, headers=headers or {})
        assert response.status_code == 201, response.text
        return response.json()
    return _create


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'direct.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def repository(database):
    return OrderRepository(database, ChangeFeed())
