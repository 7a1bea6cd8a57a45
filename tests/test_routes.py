import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError
from slowapi import Limiter
from slowapi.util import get_remote_address

import main
from main import app
from routes import get_expenses_collection


def test_create_returns_201_with_location(client, lunch):
    response = client.post("/expenses", json=lunch)
    assert response.status_code == 201
    body = response.json()
    assert response.headers["location"] == f"/expenses/{body['id']}"
    assert body["amount"] == 12.35
    assert body["notes"] == "lunch"
    assert set(body) == {"id", "date", "category", "amount", "notes", "createdAt", "updatedAt"}


def test_create_defaults_notes(client):
    response = client.post("/expenses", json={"date": "2024-05-01", "category": "health", "amount": 40})
    assert response.status_code == 201
    assert response.json()["notes"] == ""


@pytest.mark.parametrize("payload", [
    {"date": "2024-05-01", "category": "food", "amount": -1},
    {"date": "2024-05-01", "category": "vacation", "amount": 1},
    {"date": "05/01/2024", "category": "food", "amount": 1},
    {"category": "food", "amount": 1},
    {"date": "2024-05-01", "category": "food"},
    {},
])
def test_create_rejects_invalid_payloads(client, payload):
    response = client.post("/expenses", json=payload)
    assert response.status_code == 400
    error = response.json()["error"]
    assert isinstance(error["message"], str) and error["message"]
    assert isinstance(error["details"], dict)


def test_create_accepts_calendar_invalid_date(client):
    response = client.post("/expenses", json={"date": "2024-13-40", "category": "other", "amount": 1})
    assert response.status_code == 201


def test_create_without_body(client):
    response = client.post("/expenses")
    assert response.status_code == 400
    assert "required" in response.json()["error"]["message"]


def test_non_object_body_is_400(client):
    response = client.post("/expenses", json=[1, 2, 3])
    assert response.status_code == 400
    assert "error" in response.json()


def test_get_round_trip(client, lunch):
    created = client.post("/expenses", json=lunch).json()
    response = client.get(f"/expenses/{created['id']}")
    assert response.status_code == 200
    assert response.json() == created


def test_list_reverse_insertion_order(client):
    ids = [
        client.post("/expenses", json={"date": "2024-01-01", "category": "rent", "amount": n}).json()["id"]
        for n in range(4)
    ]
    response = client.get("/expenses")
    assert response.status_code == 200
    assert [e["id"] for e in response.json()] == ids[::-1]


def test_patch_notes_only(client, lunch):
    created = client.post("/expenses", json=lunch).json()
    response = client.patch(f"/expenses/{created['id']}", json={"notes": "with client"})
    assert response.status_code == 200
    body = response.json()
    assert body["notes"] == "with client"
    for field in ("id", "date", "category", "amount"):
        assert body[field] == created[field]


def test_patch_empty_payload(client, lunch):
    created = client.post("/expenses", json=lunch).json()
    response = client.patch(f"/expenses/{created['id']}", json={})
    assert response.status_code == 400
    assert response.json() == {"error": {"message": "no fields to update"}}
    assert client.get(f"/expenses/{created['id']}").json() == created


def test_patch_invalid_field(client, lunch):
    created = client.post("/expenses", json=lunch).json()
    response = client.patch(f"/expenses/{created['id']}", json={"category": "vacation"})
    assert response.status_code == 400
    assert "category" in response.json()["error"]["details"]


def test_patch_missing_record_is_404(client):
    response = client.patch(f"/expenses/{ObjectId()}", json={"notes": "x"})
    assert response.status_code == 404
    assert response.json() == {"error": {"message": "expense not found"}}


def test_delete_then_delete_again(client, lunch):
    created = client.post("/expenses", json=lunch).json()
    first = client.delete(f"/expenses/{created['id']}")
    assert first.status_code == 204
    assert first.content == b""
    second = client.delete(f"/expenses/{created['id']}")
    assert second.status_code == 404
    assert second.json()["error"]["message"] == "expense not found"


def test_get_missing_is_404(client):
    response = client.get(f"/expenses/{ObjectId()}")
    assert response.status_code == 404


@pytest.mark.parametrize("method", ["get", "patch", "delete"])
def test_malformed_id_is_400(client, method):
    kwargs = {"json": {"notes": "x"}} if method == "patch" else {}
    response = getattr(client, method)("/expenses/not-an-id", **kwargs)
    assert response.status_code == 400
    assert response.json() == {"error": {"message": "invalid id format"}}


def test_unknown_route_uses_error_shape(client):
    response = client.get("/nothing-here")
    assert response.status_code == 404
    assert "message" in response.json()["error"]


def test_missing_storage_is_503():
    app.dependency_overrides.clear()
    response = TestClient(app).get("/expenses")
    assert response.status_code == 503
    assert response.json() == {"error": {"message": "Database service not available."}}


def test_storage_error_is_generic_500():
    collection = MagicMock()
    collection.name = "expenses"
    collection.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("db.internal:27017 refused"))
    app.dependency_overrides[get_expenses_collection] = lambda: collection
    try:
        response = TestClient(app).get(f"/expenses/{ObjectId()}")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json() == {"error": {"message": "Internal Server Error"}}


def test_unexpected_error_is_generic_500():
    collection = MagicMock()
    collection.find_one = AsyncMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_expenses_collection] = lambda: collection
    try:
        response = TestClient(app, raise_server_exceptions=False).get(f"/expenses/{ObjectId()}")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json() == {"error": {"message": "Internal Server Error"}}
    assert "boom" not in response.text


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_create_negative_zero_amount_is_stored_as_zero(client):
    response = client.post("/expenses", json={"date": "2024-05-01", "category": "other", "amount": "-0"})
    assert response.status_code == 201
    assert math.copysign(1, response.json()["amount"]) == 1.0


def test_create_huge_amount(client):
    ok = client.post("/expenses", json={"date": "2024-05-01", "category": "income", "amount": 10**30})
    assert ok.status_code == 201
    assert ok.json()["amount"] == 1e30
    too_large = client.post("/expenses", json={"date": "2024-05-01", "category": "income", "amount": "1e400"})
    assert too_large.status_code == 400
    assert too_large.json()["error"]["message"] == "amount is too large"


async def test_startup_fails_fast_when_mongodb_is_unreachable(monkeypatch):
    monkeypatch.setattr(main, "MONGODB_URI", "mongodb://127.0.0.1:1/?serverSelectionTimeoutMS=300")
    with pytest.raises(ServerSelectionTimeoutError):
        async with main.lifespan(main.app):
            pass
    assert "expenses_collection" not in main.app_state


async def test_startup_requires_mongodb_uri(monkeypatch):
    monkeypatch.setattr(main, "MONGODB_URI", None)
    with pytest.raises(RuntimeError, match="MONGODB_URI"):
        async with main.lifespan(main.app):
            pass


def test_rate_limit_rejection_uses_error_shape(client, monkeypatch):
    monkeypatch.setattr(app.state, "limiter", Limiter(key_func=get_remote_address, default_limits=["1/minute"]))
    assert client.get("/expenses").status_code == 200
    response = client.get("/expenses")
    assert response.status_code == 429
    assert response.json()["error"]["message"].startswith("Rate limit exceeded")
