"""Tests for the FastAPI OXRooms interface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from oxrooms.server import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def _receive_until(websocket, message_type):
    while True:
        message = websocket.receive_json()
        if message["type"] == message_type:
            return message


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_inspect_missing_room_returns_404(client):
    missing = client.get("/api/rooms/INVALID")
    assert missing.status_code == 404


def test_rejects_invalid_page(client):
    response = client.get("/api/rooms", params={"page": 0})
    assert response.status_code == 422


def test_full_match_over_websocket(client):
    with client.websocket_connect("/ws") as alice:
        alice.send_json(
            {
                "type": "createRoom",
                "displayName": "Alice",
                "settings": {"playerOrder": "assigned"},
            }
        )
        created = alice.receive_json()
        assert created["type"] == "roomCreated"
        code = created["roomCode"]
        assert len(code) == 6

        details = client.get(f"/api/rooms/{code}").json()
        assert details["memberCount"] == 1
        assert details["openSlots"] == ["O", "X"]
        listed = client.get("/api/rooms").json()
        assert code in [room["roomCode"] for room in listed["rooms"]]

        with client.websocket_connect("/ws") as bob:
            bob.send_json({"type": "joinRoom", "roomCode": code, "displayName": "Bob"})
            assert bob.receive_json()["type"] == "roomJoined"
            assert alice.receive_json()["type"] == "lobbyState"

            alice.send_json({"type": "takeSlot", "slot": "O"})
            _receive_until(bob, "lobbyState")
            bob.send_json({"type": "takeSlot", "slot": "X"})
            _receive_until(alice, "slotTaken")

            alice.send_json({"type": "setReady", "ready": True})
            bob.send_json({"type": "setReady", "ready": True})
            start = _receive_until(alice, "matchStarting")
            assert start["mark"] == "O"
            assert start["board"]["cells"] == [""] * 9
            assert _receive_until(bob, "matchStarting")["mark"] == "X"

            for socket, cell in ((alice, 0), (bob, 3), (alice, 1), (bob, 4)):
                socket.send_json({"type": "move", "cellIndex": cell})
                _receive_until(alice, "boardUpdate")
                _receive_until(bob, "boardUpdate")

            # Out of turn: only the caller hears about it
            bob.send_json({"type": "move", "cellIndex": 8})
            error = _receive_until(bob, "error")
            assert error["code"] == "notYourTurn"

            alice.send_json({"type": "move", "cellIndex": 2})
            result = _receive_until(bob, "gameOver")
            assert result["winner"] == "O"
            assert result["winningLine"] == [0, 1, 2]
            _receive_until(alice, "gameOver")

        # Bob's cleanup has finished once his socket context exits
        assert client.get(f"/api/rooms/{code}").json()["memberCount"] == 1
        notice = _receive_until(alice, "opponentDisconnected")
        assert notice["name"] == "Bob"
        lobby = _receive_until(alice, "lobbyState")
        assert lobby["phase"] == "lobby"
        assert lobby["slots"] == {"O": None, "X": None}


def test_dropped_connections_are_always_reported(client):
    with client.websocket_connect("/ws") as host:
        host.send_json({"type": "createRoom", "displayName": "Host"})
        code = host.receive_json()["roomCode"]

        for round_number in range(5):
            with client.websocket_connect("/ws") as guest:
                guest.send_json(
                    {"type": "joinRoom", "roomCode": code, "displayName": f"G{round_number}"}
                )
                assert guest.receive_json()["type"] == "roomJoined"
                assert host.receive_json()["type"] == "lobbyState"

            assert client.get(f"/api/rooms/{code}").json()["memberCount"] == 1
            lobby = host.receive_json()
            assert lobby["type"] == "lobbyState"
            assert [m["name"] for m in lobby["members"]] == ["Host"]


def test_garbage_frames_are_ignored(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("this is not json")
        websocket.send_json({"type": "unknownIntent"})
        websocket.send_json({"type": "listRooms"})
        assert websocket.receive_json()["type"] == "roomList"
