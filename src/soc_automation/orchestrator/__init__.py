"""Orchestrator module: trigger matching, playbook execution and templates."""

from soc_automation.orchestrator.conditions import evaluate_conditions
from soc_automation.orchestrator.executor import PlaybookExecutor
from soc_automation.orchestrator.playbooks import (
    STANDARD_PLAYBOOKS,
    get_all_playbooks,
    get_enabled_playbooks,
    get_playbook,
    load_playbooks,
    matches,
)
from soc_automation.orchestrator.templates import render
from soc_automation.orchestrator.triggers import TriggerEngine, TriggeredExecution

__all__ = [
    "PlaybookExecutor",
    "TriggerEngine",
    "TriggeredExecution",
    "STANDARD_PLAYBOOKS",
    "get_playbook",
    "get_all_playbooks",
    "get_enabled_playbooks",
    "load_playbooks",
    "matches",
    "evaluate_conditions",
    "render",
]
