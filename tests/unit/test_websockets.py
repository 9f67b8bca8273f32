"""Tests for the live task and relationship WebSocket feeds."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from keyholder_tracker.events.subscriptions import Snapshot, SubscriptionHub
from keyholder_tracker.events.websocket_manager import WebSocketManager

from tests.helpers.factories import KEYHOLDER, OUTSIDER, SUBMISSIVE, auth_headers


def token_for(user_id: str) -> str:
    return auth_headers(user_id)["Authorization"].split(" ", 1)[1]


def pair(client) -> str:
    code = client.post("/v1/invites", json={}, headers=auth_headers(SUBMISSIVE)).json()["code"]
    response = client.post(
        "/v1/invites/accept", json={"code": code}, headers=auth_headers(KEYHOLDER)
    )
    return response.json()["id"]


@pytest.mark.unit
class TestTaskFeed:
    """Test the per-relationship task snapshot feed."""

    def test_snapshots_follow_task_changes(self, client, hub):
        rid = pair(client)
        url = f"/v1/ws/relationships/{rid}/tasks?token={token_for(SUBMISSIVE)}"

        with client.websocket_connect(url) as websocket:
            welcome = websocket.receive_json()
            assert welcome["type"] == "connection_established"
            assert welcome["data"]["user_id"] == SUBMISSIVE

            initial = websocket.receive_json()
            assert initial["type"] == "tasks_snapshot"
            assert initial["sequence_number"] == 1
            assert initial["data"]["tasks"] == []

            created = client.post(
                f"/v1/relationships/{rid}/tasks",
                json={"text": "Stretch"},
                headers=auth_headers(KEYHOLDER),
            ).json()

            update = websocket.receive_json()
            assert update["sequence_number"] == 2
            assert [t["id"] for t in update["data"]["tasks"]] == [created["id"]]

            websocket.send_json({"type": "ping"})
            assert websocket.receive_json() == {"type": "pong"}

        assert not hub.has_subscribers(SubscriptionHub.TASKS, rid)

    def test_invalid_token(self, client):
        rid = pair(client)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/v1/ws/relationships/{rid}/tasks?token=bad"):
                pass
        assert exc_info.value.code == 4001

    def test_outsider(self, client):
        rid = pair(client)
        url = f"/v1/ws/relationships/{rid}/tasks?token={token_for(OUTSIDER)}"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(url):
                pass
        assert exc_info.value.code == 4003

    def test_unknown_relationship(self, client):
        url = f"/v1/ws/relationships/missing/tasks?token={token_for(SUBMISSIVE)}"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(url):
                pass
        assert exc_info.value.code == 4004


@pytest.mark.unit
class TestRelationshipFeed:
    def test_new_relationship_is_pushed(self, client):
        url = f"/v1/ws/relationships?token={token_for(KEYHOLDER)}"

        with client.websocket_connect(url) as websocket:
            assert websocket.receive_json()["type"] == "connection_established"
            assert websocket.receive_json()["data"]["relationships"] == []

            rid = pair(client)

            update = websocket.receive_json()
            assert update["type"] == "relationships_snapshot"
            assert update["sequence_number"] == 2
            assert [r["id"] for r in update["data"]["relationships"]] == [rid]

    def test_stats_endpoint(self, client):
        """Test that stats need a token and report counts per topic without channel ids."""
        rid = pair(client)
        assert client.get("/v1/ws/stats").status_code == 401
        before = client.get("/v1/ws/stats", headers=auth_headers(OUTSIDER)).json()

        url = f"/v1/ws/relationships/{rid}/tasks?token={token_for(SUBMISSIVE)}"
        with client.websocket_connect(url) as websocket:
            websocket.receive_json()
            websocket.receive_json()
            response = client.get("/v1/ws/stats", headers=auth_headers(OUTSIDER))

        assert response.status_code == 200
        assert response.json()["total_connections"] == before["total_connections"] + 1
        by_topic = response.json()["connections_by_topic"]
        tasks_before = before["connections_by_topic"].get(SubscriptionHub.TASKS, 0)
        assert by_topic[SubscriptionHub.TASKS] == tasks_before + 1
        assert set(by_topic) <= {SubscriptionHub.TASKS, SubscriptionHub.RELATIONSHIPS}
        assert rid not in response.text
        assert SUBMISSIVE not in response.text


@pytest.mark.unit
class TestWebSocketManager:
    """Test connection bookkeeping and heartbeats with mocked sockets."""

    def setup_method(self):
        self.manager = WebSocketManager(heartbeat_interval=3600, connection_timeout=60)

    async def test_connect_sends_welcome_and_disconnect_unsubscribes(self):
        websocket = AsyncMock()
        connection = await self.manager.connect(websocket, "tasks", "rel-1", SUBMISSIVE)
        connection.unsubscribe = MagicMock()

        websocket.accept.assert_awaited_once()
        welcome = json.loads(websocket.send_text.await_args.args[0])
        assert welcome["type"] == "connection_established"
        assert self.manager.get_connection_count("tasks", "rel-1") == 1

        self.manager.disconnect(websocket, "tasks", "rel-1")

        connection.unsubscribe.assert_called_once()
        assert self.manager.get_total_connections() == 0
        assert self.manager._heartbeat_task is None

    async def test_failed_send_drops_connection(self):
        websocket = AsyncMock()
        connection = await self.manager.connect(websocket, "tasks", "rel-1", SUBMISSIVE)
        websocket.send_text.side_effect = RuntimeError("socket closed")

        snapshot = Snapshot(topic="tasks", key="rel-1", sequence=1, items=[])
        await self.manager.send_snapshot(connection, snapshot)

        assert self.manager.get_connection_count("tasks", "rel-1") == 0

    async def test_stale_connection_closed_on_heartbeat(self):
        websocket = AsyncMock()
        connection = await self.manager.connect(websocket, "tasks", "rel-1", SUBMISSIVE)
        connection.last_ping -= 120

        await self.manager._send_heartbeats()

        websocket.close.assert_awaited_once()
        assert self.manager.get_total_connections() == 0

    async def test_live_connection_pinged(self):
        websocket = AsyncMock()
        connection = await self.manager.connect(websocket, "tasks", "rel-1", SUBMISSIVE)
        connection.last_sequence = 7

        await self.manager._send_heartbeats()

        ping = json.loads(websocket.send_text.await_args.args[0])
        assert ping["type"] == "ping"
        assert ping["data"]["last_sequence"] == 7
        self.manager.disconnect(websocket, "tasks", "rel-1")
