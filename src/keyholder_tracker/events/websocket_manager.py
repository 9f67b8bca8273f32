"""WebSocket connection manager pushing subscription snapshots to clients."""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import WebSocket

from ..utils.logging_config import get_logger
from .schemas import ConnectionEstablishedMessage, PingMessage, encode, snapshot_message
from .subscriptions import Snapshot, Unsubscribe

logger = get_logger("websocket")

ChannelKey = Tuple[str, str]


@dataclass
class WebSocketConnection:
    """Accepted WebSocket bound to one subscription channel."""

    websocket: WebSocket
    topic: str
    key: str
    user_id: str
    last_ping: float
    last_sequence: int = 0
    unsubscribe: Optional[Unsubscribe] = None

    @property
    def channel(self) -> ChannelKey:
        return (self.topic, self.key)


class WebSocketManager:
    """Tracks connections per (topic, key) and keeps them alive with heartbeats."""

    def __init__(self, heartbeat_interval: int = 30, connection_timeout: int = 60):
        self.active_connections: Dict[ChannelKey, Dict[WebSocket, WebSocketConnection]] = {}
        self.heartbeat_interval = heartbeat_interval
        # Seconds without a pong before a connection is dropped
        self.connection_timeout = connection_timeout
        self.ping_timeout = 10
        self._heartbeat_task: Optional[asyncio.Task] = None

    async def connect(
        self, websocket: WebSocket, topic: str, key: str, user_id: str
    ) -> WebSocketConnection:
        """Accept the socket, register it and send the welcome message."""
        await websocket.accept()

        connection = WebSocketConnection(
            websocket=websocket,
            topic=topic,
            key=key,
            user_id=user_id,
            last_ping=time.time(),
        )
        self.active_connections.setdefault(connection.channel, {})[websocket] = connection

        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info(
            f"WebSocket connected: user {user_id} to {topic}/{key}. "
            f"Total connections: {self.get_connection_count(topic, key)}"
        )

        await websocket.send_text(
            encode(
                ConnectionEstablishedMessage(
                    topic=topic,
                    key=key,
                    user_id=user_id,
                    heartbeat_interval=self.heartbeat_interval,
                )
            )
        )
        return connection

    def disconnect(self, websocket: WebSocket, topic: str, key: str) -> None:
        """Forget the connection and drop its subscription."""
        channel = (topic, key)
        connections = self.active_connections.get(channel)
        if connections is None or websocket not in connections:
            return

        connection = connections.pop(websocket)
        if connection.unsubscribe is not None:
            connection.unsubscribe()
        if not connections:
            del self.active_connections[channel]

        logger.info(f"WebSocket disconnected: user {connection.user_id} from {topic}/{key}")

        if not self.active_connections and self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def send_snapshot(self, connection: WebSocketConnection, snapshot: Snapshot) -> None:
        """Subscription callback: forward one snapshot to the client."""
        try:
            await connection.websocket.send_text(encode(snapshot_message(snapshot)))
            connection.last_sequence = snapshot.sequence
        except (RuntimeError, ConnectionError) as e:
            logger.warning(
                f"Failed to send snapshot to WebSocket (user {connection.user_id}): {e}"
            )
            self.disconnect(connection.websocket, connection.topic, connection.key)

    def record_pong(self, connection: WebSocketConnection) -> None:
        connection.last_ping = time.time()

    async def _heartbeat_loop(self):
        """Background task to send periodic heartbeats."""
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                await self._send_heartbeats()
        except asyncio.CancelledError:
            logger.info("Heartbeat task cancelled")

    async def _send_heartbeats(self):
        """Ping every connection and drop the ones that stopped answering."""
        current_time = time.time()
        stale = []

        for connections in list(self.active_connections.values()):
            for websocket, connection in list(connections.items()):
                if current_time - connection.last_ping > self.connection_timeout:
                    logger.warning(
                        f"WebSocket connection timeout for user {connection.user_id} "
                        f"(last pong: {current_time - connection.last_ping:.1f}s ago)"
                    )
                    stale.append(connection)
                    continue

                try:
                    await websocket.send_text(
                        encode(PingMessage(connection.last_sequence, self.ping_timeout))
                    )
                except (RuntimeError, ConnectionError) as e:
                    logger.warning(f"Failed to ping WebSocket (user {connection.user_id}): {e}")
                    stale.append(connection)

        for connection in stale:
            try:
                await connection.websocket.close(
                    code=1001, reason="Connection timeout or ping failure"
                )
            except RuntimeError as e:
                logger.debug(f"WebSocket already closed: {e}")
            self.disconnect(connection.websocket, connection.topic, connection.key)

    def get_connection_count(self, topic: str, key: str) -> int:
        return len(self.active_connections.get((topic, key), {}))

    def get_total_connections(self) -> int:
        return sum(len(connections) for connections in self.active_connections.values())


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
