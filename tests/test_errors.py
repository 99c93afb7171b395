"""Tests for the response envelope, error mapping and health check."""

import pytest
from bson.errors import InvalidId
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from app.core.errors import ApiError, envelope, register_exception_handlers


@pytest.fixture
def failing_client():
    """A bare app with the central handlers and routes that raise."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/duplicate")
    async def raise_duplicate():
        raise DuplicateKeyError("E11000", 11000, {"keyValue": {"email": "a@b.c"}})

    @app.get("/invalid-id")
    async def raise_invalid_id():
        raise InvalidId("bad")

    @app.get("/hidden")
    async def raise_hidden():
        raise ApiError("db password is hunter2", 500, expose=False)

    @app.get("/crash")
    async def raise_crash():
        raise RuntimeError("boom")

    return TestClient(app, raise_server_exceptions=False)


def test_envelope_success_flag():
    assert envelope(201, {"x": 1}, "created") == {
        "statusCode": 201, "data": {"x": 1}, "message": "created", "success": True,
    }
    assert envelope(404)["success"] is False


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "OK"}


def test_unknown_route(client):
    resp = client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"statusCode": 404, "data": None, "message": "Not found", "success": False}


def test_duplicate_key_is_409(failing_client):
    resp = failing_client.get("/duplicate")
    assert resp.status_code == 409
    assert resp.json()["message"] == "Duplicate field: email"


def test_invalid_id_is_400(failing_client):
    resp = failing_client.get("/invalid-id")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid ID format"


def test_unexposed_message_hidden(failing_client):
    resp = failing_client.get("/hidden")
    assert resp.status_code == 500
    assert resp.json()["message"] == "Something went wrong"


def test_unhandled_error_is_500(failing_client):
    resp = failing_client.get("/crash")
    assert resp.status_code == 500
    assert resp.json()["message"] == "Internal Server Error"
    assert resp.json()["success"] is False
