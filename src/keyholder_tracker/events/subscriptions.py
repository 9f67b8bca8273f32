"""Push-based change subscriptions.

Subscribers register a callback per (topic, key) and receive full snapshots
after every committed change, each stamped with a per-subscriber sequence
number. Callbacks may be plain functions or coroutines. A failing callback
is logged and never affects the publisher or the other subscribers.
"""

import inspect
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..utils.logging_config import get_logger, log_exception

logger = get_logger("events")

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class Snapshot:
    """Full state of one topic for one key at a point in time."""

    topic: str
    key: str
    sequence: int
    items: List[Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


OnChange = Callable[[Snapshot], Any]


@dataclass
class _Subscriber:
    id: int
    callback: OnChange
    sequence: int = 0


class SubscriptionHub:
    """In-process registry of snapshot subscribers."""

    TASKS = "tasks"
    RELATIONSHIPS = "relationships"

    def __init__(self):
        self._subscribers: Dict[Tuple[str, str], Dict[int, _Subscriber]] = {}
        self._ids = itertools.count(1)

    async def subscribe(
        self,
        topic: str,
        key: str,
        on_change: OnChange,
        initial: Optional[Sequence[Any]] = None,
    ) -> Unsubscribe:
        """Register ``on_change`` and deliver ``initial`` to it straight away."""
        subscriber = _Subscriber(id=next(self._ids), callback=on_change)
        self._subscribers.setdefault((topic, key), {})[subscriber.id] = subscriber
        logger.debug(f"Subscriber {subscriber.id} added to {topic}/{key}")

        if initial is not None:
            await self._deliver(topic, key, subscriber, list(initial))

        def unsubscribe() -> None:
            bucket = self._subscribers.get((topic, key))
            if bucket is None or bucket.pop(subscriber.id, None) is None:
                return
            if not bucket:
                del self._subscribers[(topic, key)]
            logger.debug(f"Subscriber {subscriber.id} removed from {topic}/{key}")

        return unsubscribe

    def subscriber_count(self, topic: str, key: str) -> int:
        return len(self._subscribers.get((topic, key), {}))

    def has_subscribers(self, topic: str, key: str) -> bool:
        return self.subscriber_count(topic, key) > 0

    async def publish(self, topic: str, key: str, items: Sequence[Any]) -> None:
        """Deliver a snapshot to every current subscriber of (topic, key)."""
        bucket = self._subscribers.get((topic, key))
        if not bucket:
            return
        snapshot_items = list(items)
        for subscriber in list(bucket.values()):
            await self._deliver(topic, key, subscriber, snapshot_items)

    async def _deliver(
        self, topic: str, key: str, subscriber: _Subscriber, items: List[Any]
    ) -> None:
        subscriber.sequence += 1
        snapshot = Snapshot(topic=topic, key=key, sequence=subscriber.sequence, items=items)
        try:
            result = subscriber.callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_exception(
                "events",
                e,
                {"topic": topic, "key": key, "subscriber": subscriber.id},
            )
