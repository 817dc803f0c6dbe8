"""API fixtures: the FastAPI app over the shared in-memory engine."""

import pytest
from fastapi.testclient import TestClient

from reqloom.api.app import create_app

SIGNING_KEYS = ["k-current", "k-next"]


@pytest.fixture
def app(db_manager, engine):
    return create_app(db_manager, engine, session_secret="test-secret", signing_keys=SIGNING_KEYS)


@pytest.fixture
def client(app, owner_id):
    with TestClient(app) as c:
        c.headers["X-API-Key"] = "rql_alice"
        yield c


@pytest.fixture
def anon_client(app):
    with TestClient(app) as c:
        yield c
