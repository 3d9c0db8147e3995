"""
Playbook Definitions

Built-in response playbooks for common SOC scenarios, loading of playbook
files, and trigger matching.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from soc_automation.events.types import ALERT_CREATED, INCIDENT_UPDATED
from soc_automation.orchestrator.conditions import evaluate_conditions
from soc_automation.store.models import Event, Playbook, PlaybookStep


def matches(playbook: Playbook, event: Event) -> bool:
    """
    Check if an event should trigger a playbook.

    Args:
        playbook: Candidate playbook.
        event: Incoming event.

    Returns:
        True if the playbook is active, listens for this event type and
        organization, and its conditions hold.

    Raises:
        ConditionEvaluationError: If the conditions cannot be evaluated.
    """
    if not playbook.is_active or playbook.trigger_type != event.type:
        return False
    if (
        playbook.organization_id is not None
        and event.organization_id is not None
        and str(playbook.organization_id) != str(event.organization_id)
    ):
        return False
    return evaluate_conditions(playbook.trigger_conditions, event.data)


# ============================================================================
# Standard Playbooks
# ============================================================================

STANDARD_PLAYBOOKS = {
    "critical_alert_escalation": Playbook(
        id="critical_alert_escalation",
        name="Critical Alert Escalation",
        description="Notify the SOC channel and open a ticket for critical alerts",
        trigger_type=ALERT_CREATED,
        trigger_conditions={"severity": ["critical"]},
        steps=[
            PlaybookStep("notify_slack", {
                "channel": "#security-alerts",
                "message": "Critical alert: {{ title }} (alert {{ alert_id }})",
                "attachments": [{
                    "color": "danger",
                    "title": "{{ title }}",
                    "fields": [
                        {"title": "Source IP", "value": "{{ source_ip }}", "short": True},
                        {"title": "Hostname", "value": "{{ hostname }}", "short": True},
                    ],
                }],
            }),
            PlaybookStep("create_jira_ticket", {
                "project_key": "SEC",
                "summary": "[Critical] {{ title }}",
                "description": "Alert {{ alert_id }} raised with critical severity.",
                "issue_type": "Security Incident",
                "priority": "Highest",
            }),
        ],
    ),

    "block_malicious_ip": Playbook(
        id="block_malicious_ip",
        name="Block Malicious Source IP",
        description="Block the source IP of high and critical network alerts",
        trigger_type=ALERT_CREATED,
        trigger_conditions=[
            {"field": "severity", "operator": "in", "value": ["high", "critical"]},
            {"field": "source_ip", "operator": "exists", "value": True},
        ],
        steps=[
            PlaybookStep("block_ip", {
                "ip_address": "{{ source_ip }}",
                "reason": "Automated block for alert {{ alert_id }}",
                "duration": 1440,
                "direction": "inbound",
            }, abort_on_failure=True),
            PlaybookStep("notify_slack", {
                "channel": "#security-alerts",
                "message": "Blocked {{ blocked_ip }} (rule {{ rule_id }}) for alert {{ alert_id }}",
            }),
        ],
    ),

    "ransomware_containment": Playbook(
        id="ransomware_containment",
        name="Ransomware Containment",
        description="Isolate hosts reporting ransomware activity",
        trigger_type=ALERT_CREATED,
        trigger_conditions="severity == 'critical' and tags.contains('ransomware')",
        steps=[
            PlaybookStep("isolate_host", {
                "hostname": "{{ hostname }}",
                "reason": "Ransomware activity detected (alert {{ alert_id }})",
                "isolation_type": "network",
            }, abort_on_failure=True),
            PlaybookStep("notify_teams", {
                "title": "Host isolated: {{ host_identifier }}",
                "message": "Ransomware containment ran for alert {{ alert_id }}",
                "color": "attention",
            }),
            PlaybookStep("create_jira_ticket", {
                "project_key": "SEC",
                "summary": "Ransomware on {{ host_identifier }}",
                "description": "Host {{ host_identifier }} was isolated ({{ isolation_id }}).",
                "priority": "Highest",
            }),
        ],
    ),

    "incident_escalation_email": Playbook(
        id="incident_escalation_email",
        name="Incident Escalation Email",
        description="Email the response team when an incident is escalated",
        trigger_type=INCIDENT_UPDATED,
        trigger_conditions={"new_status": "escalated"},
        steps=[
            PlaybookStep("notify_email", {
                "to": ["soc-leads@example.com"],
                "subject": "Incident {{ incident_id }} escalated ({{ severity }})",
                "body": "Incident {{ incident_id }} moved from {{ old_status }} to {{ new_status }}.",
                "priority": "high",
            }),
        ],
    ),
}


def get_playbook(playbook_id: str) -> Optional[Playbook]:
    """Get a standard playbook by ID."""
    return STANDARD_PLAYBOOKS.get(playbook_id)


def get_all_playbooks() -> dict[str, Playbook]:
    """Get all standard playbooks."""
    return STANDARD_PLAYBOOKS.copy()


def get_enabled_playbooks() -> list[Playbook]:
    """Get all active standard playbooks."""
    return [p for p in STANDARD_PLAYBOOKS.values() if p.is_active]


def load_playbooks(source: Union[str, Path, list[dict[str, Any]], dict[str, Any]]) -> list[Playbook]:
    """
    Load playbooks from a JSON file or already-parsed data.

    The JSON may hold a single playbook object, a list of them, or an object
    with a ``playbooks`` list.

    Raises:
        PlaybookValidationError: If a playbook violates its invariants.
    """
    if isinstance(source, (str, Path)):
        data: Any = json.loads(Path(source).read_text(encoding="utf-8"))
    else:
        data = source

    if isinstance(data, dict):
        data = data.get("playbooks", [data])

    playbooks = [Playbook.from_dict(item) for item in data]
    for playbook in playbooks:
        playbook.validate()
    return playbooks
