import pytest

from cipherchat.relay import create_relay_app

TOKEN = "relay-test-token"


@pytest.fixture
def relay():
    app, socketio = create_relay_app(api_token=TOKEN, allowed_origins=["http://localhost:5173"], async_mode="threading")
    app.config["TESTING"] = True
    return app, socketio


def _events(socket_client, name):
    return [packet["args"] for packet in socket_client.get_received() if packet["name"] == name]


def test_authenticate_joins_user_room(relay):
    app, socketio = relay
    bob = socketio.test_client(app)

    bob.emit("authenticate", {"userId": 2})

    assert _events(bob, "authenticated") == [[{"userId": 2}]]
    assert app.extensions["connected_users"].keys() == {"2"}


def test_authenticate_requires_user_id(relay):
    app, socketio = relay
    socket_client = socketio.test_client(app)

    socket_client.emit("authenticate", {})

    assert _events(socket_client, "error") == [[{"message": "userId required"}]]


def test_relay_delivers_to_receiver_only(relay):
    app, socketio = relay
    bob = socketio.test_client(app)
    eve = socketio.test_client(app)
    bob.emit("authenticate", {"userId": 2})
    eve.emit("authenticate", {"userId": 3})
    bob.get_received()
    eve.get_received()

    envelope = {"id": 7, "senderId": 1, "receiverId": 2, "encryptedContent": "AAAA"}
    response = app.test_client().post(
        "/relay/message",
        json={"receiverId": 2, "message": envelope},
        headers={"X-Relay-Token": TOKEN},
    )

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "online": True}
    assert _events(bob, "newMessage") == [[envelope]]
    assert _events(eve, "newMessage") == []


def test_relay_reports_offline_receiver(relay):
    app, _ = relay

    response = app.test_client().post(
        "/relay/message",
        json={"receiverId": 9, "message": {"id": 1}},
        headers={"X-Relay-Token": TOKEN},
    )

    assert response.get_json()["online"] is False


def test_relay_rejects_bad_token(relay):
    app, _ = relay
    client = app.test_client()

    assert client.post("/relay/message", json={"receiverId": 2, "message": {"id": 1}}).status_code == 401
    assert client.post(
        "/relay/message",
        json={"receiverId": 2, "message": {"id": 1}},
        headers={"X-Relay-Token": "wrong"},
    ).status_code == 401


def test_relay_rejects_non_loopback(relay):
    app, _ = relay

    response = app.test_client().post(
        "/relay/message",
        json={"receiverId": 2, "message": {"id": 1}},
        headers={"X-Relay-Token": TOKEN},
        environ_base={"REMOTE_ADDR": "203.0.113.5"},
    )

    assert response.status_code == 403


def test_relay_requires_fields(relay):
    app, _ = relay

    response = app.test_client().post(
        "/relay/message", json={"receiverId": 2}, headers={"X-Relay-Token": TOKEN}
    )

    assert response.status_code == 400


def test_disconnect_forgets_user(relay):
    app, socketio = relay
    bob = socketio.test_client(app)
    bob.emit("authenticate", {"userId": 2})

    bob.disconnect()

    assert app.extensions["connected_users"] == {}


def test_health(relay):
    app, socketio = relay
    socketio.test_client(app).emit("authenticate", {"userId": 5})

    assert app.test_client().get("/health").get_json() == {"status": "ok", "connected_users": 1}
