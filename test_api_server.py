"""Tests for the status API."""

import json
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import api_server
import crud
import database
from conftest import ADMIN_A, CREATOR, DHAKA, USER


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    api_server.app.dependency_overrides[database.get_db] = override_get_db
    api_server.attach_connection(None)
    yield TestClient(api_server.app)
    api_server.app.dependency_overrides.clear()
    api_server.attach_connection(None)


def test_root_and_health_without_connection(client):
    assert client.get("/").json()["status"] == "stopped"

    health = client.get("/health").json()
    assert health == {
        "status": "stopped",
        "connected": False,
        "bot_name": "Remo",
        "timezone": "Asia/Dhaka",
        "has_qr": False,
    }


def test_qr_endpoint(client):
    assert client.get("/qr").status_code == 404

    api_server.attach_connection(SimpleNamespace(
        status="qr_ready", connected=False, latest_qr="data:image/png;base64,AAAA",
    ))
    response = client.get("/qr")
    assert response.status_code == 200
    assert response.json() == {"status": "qr_ready", "qr": "data:image/png;base64,AAAA"}
    assert client.get("/health").json()["has_qr"] is True


def test_admins_endpoint(client, admins_file):
    with open(admins_file, "w", encoding="utf-8") as fh:
        json.dump({"admins": [ADMIN_A]}, fh)

    assert client.get("/admins").json() == {"creator": CREATOR, "admins": [ADMIN_A]}


def test_list_and_delete_reminders(client, session_factory):
    db = session_factory()
    reminder = crud.create_reminder(db, USER, USER, "call mom", datetime(2026, 10, 19, 12, 0, tzinfo=DHAKA))
    reminder_id = reminder.id
    db.close()

    listed = client.get("/reminders", params={"user_jid": USER}).json()
    assert len(listed) == 1
    assert listed[0]["text"] == "call mom"
    assert listed[0]["status"] == "pending"
    assert listed[0]["due_at"] == "2026-10-19T06:00:00+00:00"

    assert client.get("/reminders", params={"user_jid": ADMIN_A}).json() == []
    assert client.get("/reminders", params={"user_jid": USER, "status": "bogus"}).status_code == 422

    short_id = reminder_id[:8]
    assert client.delete(f"/reminders/{short_id}", params={"user_jid": ADMIN_A}).status_code == 404
    response = client.delete(f"/reminders/{short_id}", params={"user_jid": USER})
    assert response.status_code == 200
    assert response.json()["reminder_id"] == short_id
    assert client.delete(f"/reminders/{short_id}", params={"user_jid": USER}).status_code == 404
