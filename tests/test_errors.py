"""
Tests for the error envelope, health check and logging hooks
"""
import asyncio
import json
import logging
import sys
import threading

from bson import ObjectId
from fastapi.testclient import TestClient

import logging_config
import settings
from database import get_db
from main import app


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "OK"
    assert data["service"] == "Conevent API"
    assert "timestamp" in data


def test_unknown_route_has_message(client):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "status": "fail",
        "message": "Cannot find /api/nothing-here on this server",
    }


def test_malformed_id_is_not_found(client, student):
    response = client.get("/api/events/123", headers=student["headers"])

    assert response.status_code == 404
    assert response.json()["message"] == "Event not found"


def test_validation_error_envelope(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["status"] == "fail"
    assert "email" in body["message"]
    assert "password" in body["message"]


def _broken_db():
    raise RuntimeError("database exploded")


def test_unexpected_error_is_generic_outside_development(client, student):
    app.dependency_overrides[get_db] = _broken_db
    safe_client = TestClient(app, base_url="https://testserver", raise_server_exceptions=False)

    response = safe_client.get(f"/api/events/{ObjectId()}", headers=student["headers"])

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "status": "error",
        "message": "Something went wrong. Please try again later.",
    }


def test_unexpected_error_has_detail_in_development(client, student, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "development")
    app.dependency_overrides[get_db] = _broken_db
    safe_client = TestClient(app, base_url="https://testserver", raise_server_exceptions=False)

    response = safe_client.get(f"/api/events/{ObjectId()}", headers=student["headers"])

    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "database exploded"
    assert "RuntimeError" in body["stack"]


def test_json_formatter_includes_extra_and_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.getLogger("conevent.test").makeRecord(
            "conevent.test", logging.ERROR, __file__, 1, "request failed", (), sys.exc_info(),
            extra={"path": "/api/events", "status_code": 500},
        )

    data = json.loads(logging_config.JSONFormatter().format(record))

    assert data["level"] == "ERROR"
    assert data["message"] == "request failed"
    assert data["path"] == "/api/events"
    assert data["status_code"] == 500
    assert data["exception"]["type"] == "ValueError"


def test_crash_handlers_terminate_the_process(monkeypatch):
    exits = []
    monkeypatch.setattr(logging_config.os, "_exit", exits.append)
    monkeypatch.setattr(logging, "shutdown", lambda: None)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    loop = asyncio.new_event_loop()
    try:
        logging_config.install_crash_handlers(loop)

        loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": ValueError()})
        sys.excepthook(RuntimeError, RuntimeError("uncaught"), None)
    finally:
        loop.close()

    assert exits == [1, 1]
