import pytest
from conftest import FakeGenerator, admin_headers
from starlette.websockets import WebSocketDisconnect


def _open(ws) -> dict:
    """Consume the greeting frames and return the ``connected`` payload."""
    connected = ws.receive_json()
    assert connected["type"] == "connected"
    maintenance = ws.receive_json()
    assert maintenance["type"] == "maintenance"
    return connected["payload"]


def test_connect_greets_with_id_and_maintenance_snapshot(client):
    with client.websocket_connect("/ws") as ws:
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["payload"]["message"] == "Welcome"
        assert connected["payload"]["id"]

        maintenance = ws.receive_json()
        assert maintenance == {
            "type": "maintenance",
            "payload": {
                "status": False,
                "message": "The board is under maintenance. Please check back soon.",
                "logoUrl": None,
                "until": None,
            },
        }


def test_mutations_fan_out_to_every_socket(client):
    headers = admin_headers(client)
    with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
        _open(first)
        _open(second)

        question = client.post("/questions", json={"text": "What is TCP?"}).json()
        for ws in (first, second):
            assert ws.receive_json() == {"type": "new-question", "payload": question}

        reply = client.post(f"/questions/{question['id']}/replies", json={"text": "A protocol"}).json()
        for ws in (first, second):
            assert ws.receive_json() == {
                "type": "new-reply",
                "payload": {"questionId": question["id"], "reply": reply},
            }

        client.delete(f"/questions/{question['id']}", headers=headers)
        for ws in (first, second):
            assert ws.receive_json() == {"type": "delete-question", "payload": {"questionId": question["id"]}}

        client.delete("/questions", headers=headers)
        for ws in (first, second):
            assert ws.receive_json() == {"type": "clear-all", "payload": {}}


def test_rejected_write_is_not_broadcast(client):
    with client.websocket_connect("/ws") as ws:
        _open(ws)
        assert client.post("/questions", json={"text": ""}).status_code == 400
        question = client.post("/questions", json={"text": "valid"}).json()
        # The next frame is the valid question; nothing was sent for the rejected one.
        assert ws.receive_json()["payload"]["id"] == question["id"]


def test_presence_join_typing_and_leave(client):
    with client.websocket_connect("/ws") as watcher:
        _open(watcher)
        with client.websocket_connect("/ws") as alice:
            alice_id = _open(alice)["id"]

            alice.send_json({"type": "set-username", "username": "alice"})
            assert watcher.receive_json() == {
                "type": "user-joined",
                "payload": {"id": alice_id, "username": "alice", "count": 2},
            }

            alice.send_json({"type": "typing", "questionId": "q1"})
            assert watcher.receive_json() == {
                "type": "typing",
                "payload": {"questionId": "q1", "username": "alice"},
            }

            alice.send_json({"type": "set-username", "username": "mallory"})
            assert alice.receive_json() == {
                "type": "error",
                "payload": {"message": "Display name is already set"},
            }

        assert watcher.receive_json() == {
            "type": "user-left",
            "payload": {"id": alice_id, "username": "alice", "count": 1},
        }


def test_garbage_frames_are_ignored(client):
    with client.websocket_connect("/ws") as ws:
        _open(ws)
        ws.send_text("not json")
        ws.send_json({"type": "unknown"})
        ws.send_json({"type": "set-username", "username": ""})
        assert ws.receive_json()["type"] == "error"


def test_hard_maintenance_evicts_live_sockets(client):
    headers = admin_headers(client)
    with client.websocket_connect("/ws") as ws:
        _open(ws)
        client.post("/admin/maintenance", json={"message": "Upgrading"}, headers=headers)

        event = ws.receive_json()
        assert event["type"] == "maintenance"
        assert event["payload"]["status"] is True
        assert event["payload"]["message"] == "Upgrading"

        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_json()
        assert excinfo.value.code == 1013

    assert client.get("/members/count").json() == {"count": 0}


def test_hard_maintenance_turns_away_new_sockets(client):
    headers = admin_headers(client)
    client.post("/admin/maintenance", json={}, headers=headers)

    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["type"] == "connected"
        assert ws.receive_json()["payload"]["status"] is True
        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_json()
        assert excinfo.value.code == 1013


def test_soft_maintenance_keeps_sockets_and_reports_toggles(make_client):
    client = make_client(maintenance_eviction="soft")
    headers = admin_headers(client)
    with client.websocket_connect("/ws") as ws:
        _open(ws)

        client.post("/admin/maintenance", json={"message": "Upgrading"}, headers=headers)
        assert ws.receive_json()["payload"]["status"] is True

        client.delete("/admin/maintenance", headers=headers)
        assert ws.receive_json()["payload"]["status"] is False

        question = client.post("/questions", json={"text": "still here"}).json()
        assert ws.receive_json() == {"type": "new-question", "payload": question}


def test_generated_reply_follows_the_primary_write(make_client):
    generator = FakeGenerator(answer="TCP is a transport protocol.")
    client = make_client(generator=generator, ai_enabled=True)
    with client.websocket_connect("/ws") as ws:
        _open(ws)

        resp = client.post("/questions", json={"text": "What is TCP?", "useAI": True})
        assert resp.status_code == 201
        question = resp.json()
        assert question["replies"] == []

        assert ws.receive_json() == {"type": "new-question", "payload": question}
        generated = ws.receive_json()
        assert generated["type"] == "new-reply"
        assert generated["payload"]["questionId"] == question["id"]
        assert generated["payload"]["reply"]["author"] == "AI Assistant"
        assert generated["payload"]["reply"]["text"] == "TCP is a transport protocol."

    assert client.get("/questions").json()[0]["replies"] == [generated["payload"]["reply"]]


def test_sse_mirrors_events_and_ends_on_eviction(client):
    headers = admin_headers(client)
    client.post("/admin/maintenance", json={"message": "Upgrading"}, headers=headers)

    resp = client.get("/events")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    body = resp.text
    assert "event: connected\ndata: " in body
    assert 'event: maintenance\ndata: {"type":"maintenance"' in body
    assert body.index("event: connected") < body.index("event: maintenance")
