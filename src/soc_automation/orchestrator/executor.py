"""
Playbook Executor

Runs playbooks: creates the execution record, executes steps in order
through the action registry, records per-step results, updates playbook
statistics and finalizes the execution status.
"""

import asyncio
import inspect
import time
from typing import Any, Callable, Optional

import structlog

from soc_automation.actions.base import ActionCategory, ActionContext
from soc_automation.actions.registry import ActionRegistry
from soc_automation.exceptions import ConditionEvaluationError, ErrorCode
from soc_automation.orchestrator.conditions import evaluate_conditions
from soc_automation.realtime.broadcast import (
    Broadcaster,
    NullBroadcaster,
    execution_channel,
    org_channel,
)
from soc_automation.orchestrator.templates import render
from soc_automation.store.models import (
    ActionResult,
    Event,
    ExecutionStatus,
    Playbook,
    PlaybookExecution,
    PlaybookStep,
    StepResult,
    TriggerSource,
    now_iso,
)
from soc_automation.store.repository import PlaybookRepository

logger = structlog.get_logger(__name__)

# Optional hook returning extra variables for an execution (e.g. AI analysis)
EnrichmentHook = Callable[[Optional[Event], Playbook], Any]

# Failures worth retrying when a step allows it
RETRYABLE_ERRORS = frozenset({ErrorCode.EXTERNAL_CALL_FAILED, ErrorCode.TIMEOUT})

# Cap on the back-off between step attempts, in seconds
MAX_RETRY_DELAY = 10.0


class PlaybookExecutor:
    """
    Executor for automation playbooks.

    Steps within one execution run strictly in order; independent
    executions run concurrently as separate asyncio tasks.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        repository: PlaybookRepository,
        broadcaster: Optional[Broadcaster] = None,
        enrichment: Optional[EnrichmentHook] = None,
        dedupe_inflight: bool = False,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the executor.

        Args:
            registry: Action registry used for every step.
            repository: Storage for execution records and statistics.
            broadcaster: Sink for live execution updates.
            enrichment: Optional hook whose returned mapping is merged into
                the execution variables before the first step.
            dedupe_inflight: Skip submissions for a playbook while a run of
                the same playbook is in flight.
            retry_delay: Back-off before the first step retry; doubles on
                each further attempt.
        """
        self._registry = registry
        self._repository = repository
        self._broadcaster = broadcaster or NullBroadcaster()
        self._enrichment = enrichment
        self._dedupe_inflight = dedupe_inflight
        self._retry_delay = retry_delay
        self._tasks: set[asyncio.Task] = set()
        self._inflight: dict[str, int] = {}

    # === Scheduling ===

    def is_running(self, playbook_id: str) -> bool:
        return self._inflight.get(playbook_id, 0) > 0

    @property
    def in_flight(self) -> int:
        return sum(self._inflight.values())

    def _reserve(self, playbook_id: str) -> None:
        self._inflight[playbook_id] = self._inflight.get(playbook_id, 0) + 1

    def _release(self, playbook_id: str) -> None:
        remaining = self._inflight.get(playbook_id, 0) - 1
        if remaining > 0:
            self._inflight[playbook_id] = remaining
        else:
            self._inflight.pop(playbook_id, None)

    def submit(
        self,
        playbook: Playbook,
        event: Optional[Event] = None,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
        triggered_by: Optional[str] = None,
        variables: Optional[dict[str, Any]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Schedule a playbook run on its own task.

        Must be called from within a running event loop.

        Returns:
            The task, or None if the run was skipped by the in-flight guard.

        Raises:
            RuntimeError: If no event loop is running.
        """
        loop = asyncio.get_running_loop()

        if self._dedupe_inflight and self.is_running(playbook.id):
            logger.info(
                "Playbook already running, trigger skipped",
                playbook_id=playbook.id,
                trigger_source=trigger_source.value,
            )
            return None

        self._reserve(playbook.id)

        async def run() -> PlaybookExecution:
            try:
                return await self._run(playbook, event, trigger_source, triggered_by, variables)
            finally:
                self._release(playbook.id)

        task = loop.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Playbook task crashed", error=str(task.exception()), exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until every submitted execution has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def execute(
        self,
        playbook: Playbook,
        event: Optional[Event] = None,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
        triggered_by: Optional[str] = None,
        variables: Optional[dict[str, Any]] = None,
    ) -> PlaybookExecution:
        """
        Run a playbook inline and return the finished execution record.

        Args:
            playbook: Playbook to run.
            event: Triggering event; its data seeds the variables.
            trigger_source: What started the run.
            triggered_by: User ID for manual runs.
            variables: Extra variables (override event data).

        Returns:
            The terminal PlaybookExecution.
        """
        self._reserve(playbook.id)
        try:
            return await self._run(playbook, event, trigger_source, triggered_by, variables)
        finally:
            self._release(playbook.id)

    # === Execution ===

    async def _build_variables(
        self,
        playbook: Playbook,
        execution: PlaybookExecution,
        event: Optional[Event],
        extra: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        variables: dict[str, Any] = {}
        if event is not None:
            variables.update(event.data)
            variables["event"] = event.to_dict()
        variables.update(extra or {})
        variables.update(
            playbook_id=playbook.id,
            execution_id=execution.id,
            organization_id=execution.organization_id,
            steps=[],
        )

        if self._enrichment is not None:
            try:
                enriched = self._enrichment(event, playbook)
                if inspect.isawaitable(enriched):
                    enriched = await enriched
                if isinstance(enriched, dict):
                    variables.update(enriched)
            except Exception:
                logger.exception(
                    "Enrichment hook failed",
                    playbook_id=playbook.id,
                    execution_id=execution.id,
                )
        return variables

    def _broadcast(self, execution: PlaybookExecution, name: str, data: dict[str, Any]) -> None:
        payload = {"event": name, "execution_id": execution.id, "data": data}
        try:
            self._broadcaster.broadcast(org_channel(execution.organization_id), payload)
            self._broadcaster.broadcast(execution_channel(execution.id), payload)
        except Exception:
            logger.exception("Broadcast failed", event=name, execution_id=execution.id)

    def _should_abort(self, action_name: str, step_abort: bool, result: ActionResult) -> bool:
        action = self._registry.get_action(action_name)
        if action is None or action.category != ActionCategory.REMEDIATION:
            return False
        return step_abort or result.abort_playbook

    def _step_enabled(self, step: PlaybookStep, variables: dict[str, Any], index: int, log: Any) -> bool:
        # A condition that cannot be evaluated skips the step
        if step.condition is None:
            return True
        try:
            enabled = evaluate_conditions(step.condition, variables)
        except ConditionEvaluationError as e:
            log.warning("Step condition evaluation failed", step=index, error=str(e))
            return False
        if not enabled:
            log.info("Playbook step skipped", step=index, action=step.action_name)
        return enabled

    async def _attempt(
        self,
        step: PlaybookStep,
        params: dict[str, Any],
        context: ActionContext,
        index: int,
        log: Any,
    ) -> tuple[ActionResult, int]:
        """Run a step, retrying transient failures with exponential back-off."""
        attempt = 1
        while True:
            result = await self._registry.execute(step.action_name, params, context, timeout=step.timeout)
            if result.success or result.error_code not in RETRYABLE_ERRORS or attempt > step.retries:
                return result, attempt

            delay = min(self._retry_delay * 2 ** (attempt - 1), MAX_RETRY_DELAY)
            log.info(
                "Retrying playbook step",
                step=index,
                action=step.action_name,
                attempt=attempt,
                delay=delay,
                error=result.error,
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def _run(
        self,
        playbook: Playbook,
        event: Optional[Event],
        trigger_source: TriggerSource,
        triggered_by: Optional[str],
        extra: Optional[dict[str, Any]],
    ) -> PlaybookExecution:
        start = time.perf_counter()
        organization_id = playbook.organization_id
        if event is not None and event.organization_id is not None:
            organization_id = event.organization_id

        execution = PlaybookExecution(
            playbook_id=playbook.id,
            organization_id=organization_id,
            trigger_source=trigger_source,
            triggered_by=triggered_by,
            trigger_entity_id=event.entity_id if event is not None else None,
        )
        self._repository.create_execution(execution)

        log = logger.bind(playbook_id=playbook.id, execution_id=execution.id)
        log.info("Playbook execution started", trigger_source=trigger_source.value, steps=len(playbook.steps))
        self._broadcast(execution, "execution:started", execution.to_dict())

        failed_steps = 0
        try:
            if not playbook.steps:
                execution.error = "Playbook has no steps"
                failed_steps = 1
            else:
                variables = await self._build_variables(playbook, execution, event, extra)
                failed_steps = await self._run_steps(playbook, execution, variables, triggered_by, log)
        except Exception as e:
            log.exception("Playbook execution crashed")
            execution.error = f"Execution error: {e}"
            failed_steps += 1

        execution.status = ExecutionStatus.FAILED if failed_steps else ExecutionStatus.COMPLETED
        execution.completed_at = now_iso()
        execution.duration_ms = (time.perf_counter() - start) * 1000

        self._repository.update_execution(execution)
        self._repository.increment_execution_stats(playbook.id, execution.duration_ms)

        log.info(
            "Playbook execution finished",
            status=execution.status.value,
            failed_steps=failed_steps,
            duration_ms=round(execution.duration_ms, 1),
        )
        self._broadcast(
            execution,
            "execution:completed" if execution.status == ExecutionStatus.COMPLETED else "execution:failed",
            execution.to_dict(),
        )
        return execution

    async def _run_steps(
        self,
        playbook: Playbook,
        execution: PlaybookExecution,
        variables: dict[str, Any],
        triggered_by: Optional[str],
        log: Any,
    ) -> int:
        """Run steps in order; returns the number of failed steps."""
        failed = 0
        for index, step in enumerate(playbook.steps):
            started_at = now_iso()
            step_start = time.perf_counter()

            if not self._step_enabled(step, variables, index, log):
                step_result = StepResult(
                    index=index,
                    action_name=step.action_name,
                    result=ActionResult.ok("Step skipped: condition not met"),
                    started_at=started_at,
                    completed_at=now_iso(),
                    skipped=True,
                    attempts=0,
                )
                execution.step_results.append(step_result)
                self._repository.update_execution(execution)
                self._broadcast(execution, "step:skipped", step_result.to_dict())
                variables["steps"].append({
                    "action": step.action_name,
                    "success": True,
                    "skipped": True,
                    "data": {},
                })
                continue

            params = render(step.parameters, variables)
            context = ActionContext(
                playbook_id=playbook.id,
                execution_id=execution.id,
                organization_id=execution.organization_id,
                user_id=triggered_by,
                data=dict(variables),
                logger=log.bind(step=index, action=step.action_name),
            )

            self._broadcast(execution, "step:started", {"index": index, "action": step.action_name})

            result, attempts = await self._attempt(step, params, context, index, log)

            step_result = StepResult(
                index=index,
                action_name=step.action_name,
                result=result,
                started_at=started_at,
                completed_at=now_iso(),
                duration_ms=(time.perf_counter() - step_start) * 1000,
                attempts=attempts,
            )
            execution.step_results.append(step_result)
            self._repository.update_execution(execution)
            self._broadcast(
                execution,
                "step:completed" if result.success else "step:failed",
                step_result.to_dict(),
            )

            variables["steps"].append({
                "action": step.action_name,
                "success": result.success,
                "data": result.data,
            })

            if result.success:
                variables.update({k: v for k, v in result.data.items() if k != "steps"})
                continue

            failed += 1
            if execution.error is None:
                execution.error = f"Step {index} ({step.action_name}) failed: {result.error}"
            log.warning("Playbook step failed", step=index, action=step.action_name, error=result.error)

            if self._should_abort(step.action_name, step.abort_on_failure, result):
                log.warning("Playbook aborted after remediation failure", step=index)
                execution.error = f"Aborted at step {index} ({step.action_name}): {result.error}"
                break
        return failed
