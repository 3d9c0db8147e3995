"""
Playbook Store Module

Data models and persistence for playbooks and playbook executions.
"""

from soc_automation.store.database import SQLitePlaybookRepository
from soc_automation.store.models import (
    ActionResult,
    Event,
    ExecutionStatus,
    Playbook,
    PlaybookExecution,
    PlaybookStep,
    Severity,
    StepResult,
    TriggerSource,
)
from soc_automation.store.repository import (
    InMemoryPlaybookRepository,
    PlaybookRepository,
)

__all__ = [
    # Repositories
    "PlaybookRepository",
    "InMemoryPlaybookRepository",
    "SQLitePlaybookRepository",
    # Models
    "Event",
    "Severity",
    "Playbook",
    "PlaybookStep",
    "PlaybookExecution",
    "ExecutionStatus",
    "TriggerSource",
    "ActionResult",
    "StepResult",
]
