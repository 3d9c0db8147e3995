"""Realtime module: broadcast sinks for live execution updates."""

from soc_automation.realtime.broadcast import (
    Broadcaster,
    InMemoryBroadcaster,
    NullBroadcaster,
    StreamBroadcaster,
    execution_channel,
    org_channel,
)

__all__ = [
    "Broadcaster",
    "NullBroadcaster",
    "InMemoryBroadcaster",
    "StreamBroadcaster",
    "org_channel",
    "execution_channel",
]
