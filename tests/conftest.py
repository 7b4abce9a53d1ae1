"""
Shared fixtures.

MongoDB is replaced by mongomock and uploads go to a per-test temp
directory, so the suite needs no running services.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        JWT_SECRET="test-secret",
        DATABASE_NAME="finance_test",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["finance_test"]


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def register_and_login(client):
    def _register_and_login(username="alice", password="secret123"):
        res = client.post("/api/auth/register", json={"username": username, "password": password})
        assert res.status_code == 201
        res = client.post("/api/auth/login", json={"username": username, "password": password})
        assert res.status_code == 200
        return {"Authorization": f"Bearer {res.json()['token']}"}

    return _register_and_login
