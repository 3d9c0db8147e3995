"""
Event Types

Names of the domain events published by the data layer, plus helpers that
build well-formed events for them.
"""

from typing import Any, Optional

from soc_automation.store.models import Event


ALERT_CREATED = "alert.created"
INCIDENT_CREATED = "incident.created"
INCIDENT_UPDATED = "incident.updated"
INCIDENT_CORRELATED = "incident.correlated"
AGENT_HEARTBEAT = "agent.heartbeat"
WILDCARD = "*"

EVENT_TYPES = [
    ALERT_CREATED,
    INCIDENT_CREATED,
    INCIDENT_UPDATED,
    INCIDENT_CORRELATED,
    AGENT_HEARTBEAT,
]


def alert_created(
    alert_id: Any,
    organization_id: Any,
    severity: str,
    title: Optional[str] = None,
    **data: Any,
) -> Event:
    """Build an ``alert.created`` event."""
    payload = {"alert_id": alert_id, "severity": severity, **data}
    if title is not None:
        payload["title"] = title
    return Event(
        type=ALERT_CREATED,
        entity_id=alert_id,
        entity_type="alert",
        organization_id=organization_id,
        data=payload,
    )


def incident_created(
    incident_id: Any,
    organization_id: Any,
    severity: str,
    **data: Any,
) -> Event:
    """Build an ``incident.created`` event."""
    return Event(
        type=INCIDENT_CREATED,
        entity_id=incident_id,
        entity_type="incident",
        organization_id=organization_id,
        data={"incident_id": incident_id, "severity": severity, **data},
    )


def incident_updated(
    incident_id: Any,
    organization_id: Any,
    old_status: str,
    new_status: str,
    severity: str,
    **data: Any,
) -> Event:
    """Build an ``incident.updated`` event for a status change."""
    return Event(
        type=INCIDENT_UPDATED,
        entity_id=incident_id,
        entity_type="incident",
        organization_id=organization_id,
        data={
            "incident_id": incident_id,
            "old_status": old_status,
            "new_status": new_status,
            "severity": severity,
            **data,
        },
    )


def incident_correlated(
    incident_id: Any,
    organization_id: Any,
    alert_ids: list[Any],
    **data: Any,
) -> Event:
    """Build an ``incident.correlated`` event after alerts were grouped."""
    return Event(
        type=INCIDENT_CORRELATED,
        entity_id=incident_id,
        entity_type="incident",
        organization_id=organization_id,
        data={"incident_id": incident_id, "alert_ids": list(alert_ids), **data},
    )


def agent_heartbeat(agent_id: Any, organization_id: Any, status: str = "active", **data: Any) -> Event:
    """Build an ``agent.heartbeat`` event."""
    return Event(
        type=AGENT_HEARTBEAT,
        entity_id=agent_id,
        entity_type="agent",
        organization_id=organization_id,
        data={"agent_id": agent_id, "status": status, **data},
    )
