"""
Playbook Repository

Storage boundary for playbooks and execution records. The automation core
never talks to a database directly; it is handed a repository.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from soc_automation.store.models import Playbook, PlaybookExecution


class PlaybookRepository(ABC):
    """Abstract storage for playbooks and their executions."""

    @abstractmethod
    def get_playbook(self, playbook_id: str) -> Optional[Playbook]:
        """Get playbook by ID."""

    @abstractmethod
    def list_active_playbooks(
        self,
        trigger_type: Optional[str] = None,
        organization_id: Any = None,
    ) -> list[Playbook]:
        """
        List active playbooks.

        Args:
            trigger_type: Only return playbooks for this event type.
            organization_id: Only return playbooks owned by this organization
                or global playbooks (organization_id None).
        """

    @abstractmethod
    def save_playbook(self, playbook: Playbook) -> Playbook:
        """Insert or replace a playbook."""

    @abstractmethod
    def create_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        """Persist a new execution record."""

    @abstractmethod
    def update_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        """Persist the current state of an execution record."""

    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[PlaybookExecution]:
        """Get execution by ID."""

    @abstractmethod
    def list_executions(
        self, playbook_id: Optional[str] = None, limit: int = 50
    ) -> list[PlaybookExecution]:
        """List recent executions, newest first."""

    @abstractmethod
    def increment_execution_stats(
        self, playbook_id: str, duration_ms: float
    ) -> Optional[Playbook]:
        """Bump execution count and fold the duration into the moving average."""


def _org_matches(playbook: Playbook, organization_id: Any) -> bool:
    if organization_id is None or playbook.organization_id is None:
        return True
    return str(playbook.organization_id) == str(organization_id)


class InMemoryPlaybookRepository(PlaybookRepository):
    """
    Process-local repository.

    Stored objects are copies, so callers mutating an execution do not see
    their changes persisted until they call ``update_execution``.
    """

    def __init__(self, playbooks: Optional[list[Playbook]] = None):
        self._lock = threading.Lock()
        self._playbooks: dict[str, Playbook] = {}
        self._executions: dict[str, PlaybookExecution] = {}
        for playbook in playbooks or []:
            self.save_playbook(playbook)

    def get_playbook(self, playbook_id: str) -> Optional[Playbook]:
        with self._lock:
            playbook = self._playbooks.get(playbook_id)
            return copy.deepcopy(playbook) if playbook else None

    def list_active_playbooks(
        self,
        trigger_type: Optional[str] = None,
        organization_id: Any = None,
    ) -> list[Playbook]:
        with self._lock:
            return [
                copy.deepcopy(p)
                for p in self._playbooks.values()
                if p.is_active
                and (trigger_type is None or p.trigger_type == trigger_type)
                and _org_matches(p, organization_id)
            ]

    def save_playbook(self, playbook: Playbook) -> Playbook:
        playbook.validate()
        with self._lock:
            self._playbooks[playbook.id] = copy.deepcopy(playbook)
        return playbook

    def create_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        with self._lock:
            self._executions[execution.id] = copy.deepcopy(execution)
        return execution

    def update_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        with self._lock:
            if execution.id not in self._executions:
                raise KeyError(f"Unknown execution: {execution.id}")
            self._executions[execution.id] = copy.deepcopy(execution)
        return execution

    def get_execution(self, execution_id: str) -> Optional[PlaybookExecution]:
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    def list_executions(
        self, playbook_id: Optional[str] = None, limit: int = 50
    ) -> list[PlaybookExecution]:
        with self._lock:
            rows = [
                copy.deepcopy(e)
                for e in self._executions.values()
                if playbook_id is None or e.playbook_id == playbook_id
            ]
        rows.sort(key=lambda e: e.started_at, reverse=True)
        return rows[:limit]

    def increment_execution_stats(
        self, playbook_id: str, duration_ms: float
    ) -> Optional[Playbook]:
        with self._lock:
            playbook = self._playbooks.get(playbook_id)
            if playbook is None:
                return None
            playbook.record_execution(duration_ms)
            return copy.deepcopy(playbook)
