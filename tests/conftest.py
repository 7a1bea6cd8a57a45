from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from main import app
from routes import get_expenses_collection


@pytest.fixture
def collection():
    return AsyncMongoMockClient()[f"test_{uuid4().hex}"]["expenses"]


@pytest.fixture
def client(collection):
    app.dependency_overrides[get_expenses_collection] = lambda: collection
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def lunch():
    return {"date": "2024-05-01", "category": "food", "amount": 12.3456, "notes": "lunch"}
