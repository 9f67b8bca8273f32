"""WebSocket message schemas for real-time updates."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .subscriptions import Snapshot


def _dump(items: List[Any]) -> List[Dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


class WebSocketMessage(BaseModel):
    """Base WebSocket message format."""

    type: str
    data: Dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sequence_number: Optional[int] = None


class ConnectionEstablishedMessage(WebSocketMessage):
    """Sent once after the connection is accepted and authenticated."""

    def __init__(self, topic: str, key: str, user_id: str, heartbeat_interval: int, **kwargs):
        data = {
            "topic": topic,
            "key": key,
            "user_id": user_id,
            "heartbeat_interval": heartbeat_interval,
        }
        super().__init__(type="connection_established", data=data, **kwargs)


class TaskSnapshotMessage(WebSocketMessage):
    """Full task list of a relationship after a change."""

    def __init__(self, snapshot: Snapshot, **kwargs):
        data = {
            "relationship_id": snapshot.key,
            "tasks": _dump(snapshot.items),
        }
        super().__init__(
            type="tasks_snapshot",
            data=data,
            sequence_number=snapshot.sequence,
            timestamp=snapshot.published_at,
            **kwargs,
        )


class RelationshipSnapshotMessage(WebSocketMessage):
    """Full relationship list of a user after a change."""

    def __init__(self, snapshot: Snapshot, **kwargs):
        data = {
            "user_id": snapshot.key,
            "relationships": _dump(snapshot.items),
        }
        super().__init__(
            type="relationships_snapshot",
            data=data,
            sequence_number=snapshot.sequence,
            timestamp=snapshot.published_at,
            **kwargs,
        )


class PingMessage(WebSocketMessage):
    def __init__(self, last_sequence: int, timeout_seconds: int, **kwargs):
        super().__init__(
            type="ping",
            data={"last_sequence": last_sequence, "timeout_seconds": timeout_seconds},
            **kwargs,
        )


SNAPSHOT_MESSAGES = {
    "tasks": TaskSnapshotMessage,
    "relationships": RelationshipSnapshotMessage,
}


def snapshot_message(snapshot: Snapshot) -> WebSocketMessage:
    return SNAPSHOT_MESSAGES[snapshot.topic](snapshot)


def encode(message: WebSocketMessage) -> str:
    return message.model_dump_json()


__all__ = [
    "ConnectionEstablishedMessage",
    "PingMessage",
    "RelationshipSnapshotMessage",
    "TaskSnapshotMessage",
    "WebSocketMessage",
    "encode",
    "snapshot_message",
]
