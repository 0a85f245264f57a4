import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chatsync.main import create_app
from chatsync.routers.users import get_user_service
from chatsync.utils.dependencies import get_bus, get_chat_service, get_directory, get_member_repository, get_resolver
from chatsync.utils.realtime_bus import LocalBus
from chatsync.utils.security import create_access_token
from fakes import FakeStore, Services


@pytest.fixture
def store():
    store = FakeStore()
    store.add_profile("alice", username="alice", full_name="Alice Liddell")
    store.add_profile("bob", username="bob", full_name="Bob Builder")
    store.add_profile("carol", username="carol", full_name="Carol Danvers")
    return store


@pytest.fixture
def client(store):
    bus = LocalBus()
    services = Services(store, bus=bus)
    app = create_app(lifespan=None)
    app.state.bus = bus
    app.state.db = None
    app.dependency_overrides[get_bus] = lambda: bus
    app.dependency_overrides[get_directory] = lambda: services.directory
    app.dependency_overrides[get_resolver] = lambda: services.resolver
    app.dependency_overrides[get_chat_service] = lambda: services.chat
    app.dependency_overrides[get_user_service] = lambda: services.user_service
    app.dependency_overrides[get_member_repository] = lambda: services.members
    with TestClient(app) as client:
        yield client


def auth(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200


def test_missing_token_is_unauthenticated(client):
    response = client.get("/conversations")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized", "code": "unauthenticated"}


def test_bad_token_is_unauthenticated(client):
    response = client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["code"] == "unauthenticated"


def test_direct_conversation_with_self_is_rejected(client):
    response = client.post("/conversations/direct", json={"target_user_id": "alice"}, headers=auth("alice"))

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["code"] == "invalid_argument"


def test_send_then_list(client):
    created = client.post("/conversations/direct", json={"target_user_id": "bob"}, headers=auth("alice"))
    assert created.status_code == 200
    assert created.json()["is_new"] is True
    cid = created.json()["id"]

    sent = client.post("/messages", json={"conversation_id": cid, "content": "hello bob"}, headers=auth("alice"))
    assert sent.status_code == 201
    assert sent.json()["conversation_id"] == cid

    messages = client.get(f"/conversations/{cid}/messages", headers=auth("bob")).json()
    assert [m["content"] for m in messages] == ["hello bob"]
    assert messages[0]["status"] == "sent"

    listed = client.get("/conversations", headers=auth("bob")).json()
    assert listed[0]["id"] == cid
    assert listed[0]["name"] == "alice"
    assert listed[0]["last_message"] == "hello bob"

    again = client.post("/conversations/direct", json={"target_user_id": "alice"}, headers=auth("bob"))
    assert again.json() == {"id": cid, "is_new": False}


def test_mark_read(client, store):
    store.seed_conversation("c1", ["alice", "bob"])
    mid = store.seed_message("c1", "bob", "ping")

    response = client.post("/messages/mark_read", json={"conversation_id": "c1"}, headers=auth("alice"))

    assert response.status_code == 200
    assert response.json() == {"updated_count": 1, "message_ids": [mid]}
    assert store.messages[mid]["status"] == "read"


def test_non_member_cannot_send_or_read(client, store):
    store.seed_conversation("c1", ["alice", "bob"])

    sent = client.post("/messages", json={"conversation_id": "c1", "content": "hi"}, headers=auth("carol"))
    assert sent.status_code == 403
    assert sent.json()["code"] == "forbidden"

    detail = client.get("/conversations/c1", headers=auth("carol"))
    assert detail.status_code == 404


def test_create_group(client, store):
    response = client.post("/conversations", json={"member_ids": ["bob", "carol"], "name": "Trio"}, headers=auth("alice"))

    assert response.status_code == 201
    cid = response.json()["id"]
    assert store.conversations[cid]["is_group"] is True
    detail = client.get(f"/conversations/{cid}", headers=auth("carol")).json()
    assert detail["name"] == "Trio"


def test_presence_endpoints(client):
    client.portal.call(client.app.state.bus.track, "global_presence", "bob")

    assert client.get("/presence", headers=auth("alice")).json() == {"online": ["bob"]}
    assert client.get("/presence/bob", headers=auth("alice")).json() == {"user_id": "bob", "online": True}
    assert client.get("/presence/carol", headers=auth("alice")).json() == {"user_id": "carol", "online": False}


def test_user_endpoints(client):
    found = client.get("/users/search", params={"q": "bui"}, headers=auth("alice")).json()
    assert [u["id"] for u in found] == ["bob"]

    me = client.get("/users/me", headers=auth("alice")).json()
    assert me["full_name"] == "Alice Liddell"

    missing = client.get("/users/nobody", headers=auth("alice"))
    assert missing.status_code == 404


def test_websocket_inbox_round_trip(client):
    with client.websocket_connect(f"/ws?token={create_access_token('bob')}") as ws:
        ws.send_json({"type": "subscribe", "ref": "1", "channel": "user:bob:inbox", "event": "new-conversation"})
        assert ws.receive_json() == {"type": "ok", "ref": "1"}

        ws.send_json({"type": "broadcast", "ref": "2", "channel": "user:bob:inbox", "event": "new-conversation", "payload": {"conversation_id": "c9"}})
        event = ws.receive_json()
        assert event == {"type": "event", "channel": "user:bob:inbox", "event": "new-conversation", "payload": {"conversation_id": "c9"}}
        assert ws.receive_json() == {"type": "ok", "ref": "2"}


def test_websocket_rejects_foreign_channels(client, store):
    store.seed_conversation("c1", ["alice", "bob"])

    with client.websocket_connect(f"/ws?token={create_access_token('carol')}") as ws:
        ws.send_json({"type": "subscribe", "ref": "1", "channel": "user:bob:inbox", "event": "new-conversation"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "subscribe", "ref": "2", "channel": "conversation:c1", "event": "new-message"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "broadcast", "ref": "3", "channel": "changes:messages:conversation_id=eq.c1", "event": "UPDATE", "payload": {}})
        assert ws.receive_json()["type"] == "error"


def test_websocket_presence_snapshot(client):
    with client.websocket_connect(f"/ws?token={create_access_token('alice')}") as ws:
        ws.send_json({"type": "track", "ref": "1"})
        assert ws.receive_json() == {"type": "ok", "ref": "1"}

        ws.send_json({"type": "subscribe", "ref": "2", "channel": "presence:global_presence", "event": "sync"})
        snapshot = ws.receive_json()
        assert snapshot["payload"] == {"keys": ["alice"]}
        assert ws.receive_json() == {"type": "ok", "ref": "2"}

    assert client.get("/presence/alice", headers=auth("bob")).json()["online"] is False


def test_websocket_without_valid_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws?token=garbage") as ws:
            ws.receive_json()

    assert excinfo.value.code == 4401


def test_presence_survives_closing_one_of_two_sockets(client):
    token = create_access_token("alice")
    with client.websocket_connect(f"/ws?token={token}") as first:
        first.send_json({"type": "track", "ref": "1"})
        assert first.receive_json() == {"type": "ok", "ref": "1"}

        with client.websocket_connect(f"/ws?token={token}") as second:
            second.send_json({"type": "track", "ref": "1"})
            assert second.receive_json() == {"type": "ok", "ref": "1"}

        assert client.get("/presence/alice", headers=auth("bob")).json()["online"] is True

    assert client.get("/presence/alice", headers=auth("bob")).json()["online"] is False
