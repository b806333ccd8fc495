"""
Integration Tests for Relay Ingestion
=====================================

Tests for keystream/relay/routes.py

Test Coverage:
--------------
1. POST /api/relay/ingest without or with a wrong X-Relay-Secret => 401
2. Valid item => 200 with the job acknowledgement
3. Unchanged re-push => 409, item without content => 422, long author accepted
4. No secret configured => any caller accepted
5. End to end: a room member sees the item typed out, then the final message

Run tests:
----------
    pytest keystream/tests/test_relay_api.py -v
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from keystream.config import Settings
from keystream.main import create_app

SECRET = "relay-test-secret"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def client():
    settings = Settings(RELAY_SHARED_SECRET=SECRET, LOG_LEVEL="WARNING")
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def headers():
    return {"X-Relay-Secret": SECRET}


def story(external_id=1, title="Hello", **extra):
    item = {"externalId": external_id, "type": "story", "author": "ada", "title": title}
    item.update(extra)
    return item


# ============================================================================
# Authentication
# ============================================================================

def test_missing_secret_is_rejected(client):
    response = client.post("/api/relay/ingest", json={"item": story()})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert "X-Relay-Secret" in response.json()["detail"]


def test_wrong_secret_is_rejected(client):
    response = client.post(
        "/api/relay/ingest",
        json={"item": story()},
        headers={"X-Relay-Secret": "guess"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_open_ingestion_when_no_secret_configured():
    with TestClient(create_app(Settings(RELAY_SHARED_SECRET="", LOG_LEVEL="WARNING"))) as client:
        response = client.post("/api/relay/ingest", json={"item": story()})

    assert response.status_code == status.HTTP_200_OK


# ============================================================================
# Ingestion
# ============================================================================

def test_item_is_accepted(client, headers):
    response = client.post(
        "/api/relay/ingest",
        json={"item": story(external_id=99), "room": "demo"},
        headers=headers,
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "accepted"
    assert data["externalId"] == "99"
    assert data["room"] == "demo"
    assert data["frames"] == 5
    assert data["id"]


def test_room_defaults_to_relay_room(client, headers):
    response = client.post("/api/relay/ingest", json={"item": story()}, headers=headers)

    assert response.json()["room"] == "global"


def test_unchanged_item_conflicts(client, headers):
    first = client.post("/api/relay/ingest", json={"item": story()}, headers=headers)
    second = client.post("/api/relay/ingest", json={"item": story()}, headers=headers)
    edited = client.post("/api/relay/ingest", json={"item": story(title="Hello again")}, headers=headers)

    assert first.status_code == status.HTTP_200_OK
    assert second.status_code == status.HTTP_409_CONFLICT
    assert edited.status_code == status.HTTP_200_OK


def test_item_without_content_is_unprocessable(client, headers):
    response = client.post(
        "/api/relay/ingest",
        json={"item": {"externalId": 5, "text": "<p> </p>"}},
        headers=headers,
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_long_author_is_accepted(client, headers):
    response = client.post(
        "/api/relay/ingest",
        json={"item": story(external_id=7, author="x" * 300)},
        headers=headers,
    )

    assert response.status_code == status.HTTP_200_OK


def test_malformed_body_is_unprocessable(client, headers):
    response = client.post("/api/relay/ingest", json={"item": {"title": "no id"}}, headers=headers)

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# ============================================================================
# End to end
# ============================================================================

def test_room_sees_item_typed_out(client, headers):
    with client.websocket_connect("/ws?room=demo") as viewer:
        response = client.post(
            "/api/relay/ingest",
            json={"item": story(url="https://www.example.com/hello"), "room": "demo"},
            headers=headers,
        )
        assert response.status_code == status.HTTP_200_OK

        events = []
        while len(events) < 10:
            event = viewer.receive_json()
            events.append(event)
            if event["type"] == "newMessage":
                break

    keystrokes = [e for e in events if e["type"] == "keystroke"]
    assert [e["content"] for e in keystrokes] == ["H", "He", "Hel", "Hell", "Hello"]
    assert all(e["username"] == "ada" and e["isTyping"] is True for e in keystrokes)
    assert keystrokes[0]["sourceLabel"] == "example.com"

    final = events[-1]
    assert final["type"] == "newMessage"
    assert final["content"] == "Hello"
    assert final["serverPrepared"] is True

    history = client.get("/api/messages/demo").json()
    assert [m["content"] for m in history] == ["Hello"]
    assert history[0]["sourceUrl"] == "https://www.example.com/hello"
