"""
Dispatch event publishing  (publish / subscribe).

The dispatch service never talks to a notification channel directly: it is
handed an ``EventPublisher`` and emits outcome events through it.

Channels
--------
* ``dispatch:<service_type>`` -- every outcome for taxi / delivery /
  marketplace jobs (admin monitors, customer apps)
* ``driver:<driver_id>``      -- offers and cancellations for one driver

Payloads are JSON objects with at least ``event`` and ``job_id``.
"""

from __future__ import annotations

import fnmatch
import json
import logging
from typing import Any, Callable, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

Event = dict[str, Any]


class EventPublisher(Protocol):
    async def publish(self, channel: str, event: Event) -> None: ...


def service_channel(service_type: str, prefix: str = "dispatch") -> str:
    return f"{prefix}:{getattr(service_type, 'value', service_type)}"


def driver_channel(driver_id: str) -> str:
    return f"driver:{driver_id}"


class RedisEventPublisher:
    """Publishes JSON events on Redis pub/sub channels."""

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, channel: str, event: Event) -> None:
        receivers = await self.redis.publish(channel, json.dumps(event, default=str))
        logger.debug("Published %s on %s (%d receivers)", event.get("event"), channel, receivers)


class CallbackPublisher:
    """Adapts a plain ``callback(channel, event)`` into a publisher."""

    def __init__(self, callback: Callable[[str, Event], Any]):
        self.callback = callback

    async def publish(self, channel: str, event: Event) -> None:
        result = self.callback(channel, event)
        if hasattr(result, "__await__"):
            await result


class InMemoryPublisher:
    """
    Keeps published events in memory and fans them out to subscribers.

    Subscriptions take a glob pattern on the channel name, e.g.
    ``driver:*`` or ``dispatch:taxi``.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, Event]] = []
        self._subscribers: list[tuple[str, Callable[[str, Event], Any]]] = []

    def subscribe(self, pattern: str, callback: Callable[[str, Event], Any]) -> None:
        self._subscribers.append((pattern, callback))

    async def publish(self, channel: str, event: Event) -> None:
        self.events.append((channel, event))
        for pattern, callback in self._subscribers:
            if fnmatch.fnmatchcase(channel, pattern):
                result = callback(channel, event)
                if hasattr(result, "__await__"):
                    await result

    def names(self, channel: str | None = None) -> list[str]:
        """Event names in publish order, optionally for one channel."""
        return [e["event"] for c, e in self.events if channel is None or c == channel]
