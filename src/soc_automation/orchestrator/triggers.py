"""
Trigger Engine

Matches bus events against active playbooks and requests their execution.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from soc_automation.events.bus import EventBus
from soc_automation.exceptions import ConditionEvaluationError
from soc_automation.orchestrator.executor import PlaybookExecutor
from soc_automation.orchestrator.playbooks import matches
from soc_automation.store.models import Event, Playbook, TriggerSource
from soc_automation.store.repository import PlaybookRepository

logger = structlog.get_logger(__name__)


_ENTITY_SOURCES = {
    "alert": TriggerSource.ALERT,
    "incident": TriggerSource.INCIDENT,
    "schedule": TriggerSource.SCHEDULE,
}


def trigger_source_for(entity_type: Optional[str]) -> TriggerSource:
    """Map an event's entity type to an execution trigger source."""
    return _ENTITY_SOURCES.get((entity_type or "").lower(), TriggerSource.ALERT)


@dataclass
class TriggeredExecution:
    """A playbook run requested for an event."""
    playbook: Playbook
    task: Optional[asyncio.Task]
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.task is None


class TriggerEngine:
    """
    Routes events to matching playbooks.

    The active playbook set is cached and reloaded from the repository once
    ``refresh_interval`` seconds have passed, on ``invalidate()``, or by the
    optional background refresh task.
    """

    def __init__(
        self,
        repository: PlaybookRepository,
        executor: PlaybookExecutor,
        refresh_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._repository = repository
        self._executor = executor
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._playbooks: list[Playbook] = []
        self._loaded_at: Optional[float] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # === Playbook cache ===

    def refresh(self) -> list[Playbook]:
        """Reload the active playbook set from the repository."""
        self._playbooks = self._repository.list_active_playbooks()
        self._loaded_at = self._clock()
        logger.debug("Active playbooks refreshed", count=len(self._playbooks))
        return self._playbooks

    def invalidate(self) -> None:
        """Force a reload on the next event."""
        self._loaded_at = None

    def _active_playbooks(self) -> list[Playbook]:
        if (
            self._loaded_at is None
            or self._clock() - self._loaded_at >= self._refresh_interval
        ):
            self.refresh()
        return self._playbooks

    def start_refresh_task(self) -> asyncio.Task:
        """Start periodic background refreshes on the running loop."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())
        return self._refresh_task

    async def _refresh_loop(self) -> None:
        interval = max(self._refresh_interval, 1.0)
        while True:
            await asyncio.sleep(interval)
            try:
                self.refresh()
            except Exception:
                logger.exception("Playbook refresh failed")

    async def stop(self) -> None:
        """Stop the background refresh task and detach from the bus."""
        self.detach()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    # === Event handling ===

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every event on the bus."""
        self.detach()
        self._unsubscribe = bus.subscribe(None, self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def matching_playbooks(self, event: Event) -> list[Playbook]:
        """
        Active playbooks whose trigger and conditions match an event.

        Condition errors count as no match and are logged.
        """
        matched = []
        for playbook in self._active_playbooks():
            try:
                if matches(playbook, event):
                    matched.append(playbook)
            except ConditionEvaluationError as e:
                logger.warning(
                    "Trigger condition evaluation failed",
                    playbook_id=playbook.id,
                    event_type=event.type,
                    error=str(e),
                )
        return matched

    def handle_event(self, event: Event) -> list[TriggeredExecution]:
        """
        Request execution of every playbook matching the event.

        Returns:
            One entry per matched playbook. Entries whose run was skipped by
            the executor's in-flight guard, or could not be scheduled, carry
            no task.
        """
        triggered = []
        source = trigger_source_for(event.entity_type)
        for playbook in self.matching_playbooks(event):
            logger.info(
                "Playbook triggered",
                playbook_id=playbook.id,
                event_type=event.type,
                entity_id=event.entity_id,
            )
            try:
                task = self._executor.submit(playbook, event=event, trigger_source=source)
            except Exception as e:
                logger.error(
                    "Playbook submission failed",
                    playbook_id=playbook.id,
                    event_type=event.type,
                    error=str(e),
                )
                triggered.append(TriggeredExecution(playbook=playbook, task=None, error=str(e)))
                continue
            triggered.append(TriggeredExecution(playbook=playbook, task=task))
        return triggered
