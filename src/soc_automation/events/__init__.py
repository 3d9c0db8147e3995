"""Events module: in-process event bus and event type catalog."""

from soc_automation.events.bus import EventBus
from soc_automation.events.types import (
    AGENT_HEARTBEAT,
    ALERT_CREATED,
    EVENT_TYPES,
    INCIDENT_CORRELATED,
    INCIDENT_CREATED,
    INCIDENT_UPDATED,
    agent_heartbeat,
    alert_created,
    incident_correlated,
    incident_created,
    incident_updated,
)

__all__ = [
    "EventBus",
    "EVENT_TYPES",
    "ALERT_CREATED",
    "INCIDENT_CREATED",
    "INCIDENT_UPDATED",
    "INCIDENT_CORRELATED",
    "AGENT_HEARTBEAT",
    "alert_created",
    "incident_created",
    "incident_updated",
    "incident_correlated",
    "agent_heartbeat",
]
