import pytest
from fastapi.testclient import TestClient

from database import MemoryStorage
from main import create_app
from store import CatalogStore


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return CatalogStore(storage)


@pytest.fixture
def client(store):
    with TestClient(create_app(store)) as c:
        yield c


@pytest.fixture
def admin_client(client):
    r = client.post("/api/admin/login", json={"password": "admin123"})
    assert r.status_code == 200
    return client
