"""
Realtime Broadcasting

Sinks for execution and notification updates. The automation core only
calls ``broadcast(channel, payload)``; transports (SSE, websockets) read
from a StreamBroadcaster.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


def org_channel(organization_id: Any) -> str:
    """Channel carrying updates for one organization."""
    return f"org:{organization_id}"


def execution_channel(execution_id: str) -> str:
    """Channel carrying updates for one execution."""
    return f"execution:{execution_id}"


class Broadcaster(ABC):
    """Abstract broadcast sink."""

    @abstractmethod
    def broadcast(self, channel: str, payload: dict[str, Any]) -> None:
        """Publish a payload on a channel. Must not block."""


class NullBroadcaster(Broadcaster):
    """Discards every message."""

    def broadcast(self, channel: str, payload: dict[str, Any]) -> None:
        return None


class InMemoryBroadcaster(Broadcaster):
    """Records messages in a list; useful for tests and debugging."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []

    def broadcast(self, channel: str, payload: dict[str, Any]) -> None:
        self.messages.append((channel, payload))

    def messages_for(self, channel: str) -> list[dict[str, Any]]:
        return [payload for ch, payload in self.messages if ch == channel]

    def events(self) -> list[str]:
        """Event names of all recorded messages, in order."""
        return [payload.get("event", "") for _, payload in self.messages]


class StreamBroadcaster(Broadcaster):
    """
    Fans messages out to subscriber queues.

    Each subscriber gets a bounded asyncio queue; when a slow subscriber's
    queue is full its oldest message is dropped.
    """

    def __init__(self, maxsize: int = 100):
        self._maxsize = maxsize
        self._subscribers: dict[asyncio.Queue, Optional[frozenset[str]]] = {}

    def subscribe(self, channels: Optional[set[str]] = None) -> asyncio.Queue:
        """
        Register a subscriber.

        Args:
            channels: Channels to receive; None receives every channel.

        Returns:
            Queue yielding ``{"channel": ..., "payload": ...}`` messages.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers[queue] = frozenset(channels) if channels else None
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, channel: str, payload: dict[str, Any]) -> None:
        message = {"channel": channel, "payload": payload}
        for queue, channels in list(self._subscribers.items()):
            if channels is not None and channel not in channels:
                continue
            if queue.full():
                queue.get_nowait()
                logger.warning("Broadcast queue full, dropped oldest message", channel=channel)
            queue.put_nowait(message)
