"""
Tests for the Playbook Executor
"""

import asyncio
from typing import Any, Optional

import pytest
from pydantic import BaseModel

from soc_automation.actions.base import ActionCategory, BaseAction


class RecordParams(BaseModel):
    value: Any = None
    fail: bool = False
    abort: bool = False
    output: Optional[dict] = None
    delay: float = 0.0


class RecordAction(BaseAction):
    """Records rendered params; fails or aborts on request."""

    name = "record"
    description = "Record parameters"
    category = ActionCategory.NOTIFICATION
    parameter_schema = RecordParams

    def __init__(self):
        self.calls: list[tuple[RecordParams, Any]] = []

    async def execute(self, params, context):
        self.calls.append((params, context))
        if params.delay:
            await asyncio.sleep(params.delay)
        if params.fail:
            return self.failure("recorded failure", abort_playbook=params.abort)
        return self.success("recorded", params.output or {"value": params.value})


class ContainAction(RecordAction):
    name = "contain"
    category = ActionCategory.REMEDIATION


class FlakyParams(BaseModel):
    failures: int = 1
    error_code: str = "external_call_failed"


class FlakyAction(BaseAction):
    """Fails the first ``failures`` calls, then succeeds."""

    name = "flaky"
    description = "Fail a few times"
    category = ActionCategory.NOTIFICATION
    parameter_schema = FlakyParams

    def __init__(self):
        self.calls = 0

    async def execute(self, params, context):
        from soc_automation.exceptions import ErrorCode

        self.calls += 1
        if self.calls <= params.failures:
            return self.failure(f"attempt {self.calls} failed", error_code=ErrorCode(params.error_code))
        return self.success("recovered", {"attempt": self.calls})


def make_playbook(*steps, playbook_id="pb-1", **kwargs):
    from soc_automation.store.models import Playbook, PlaybookStep

    return Playbook(
        id=playbook_id,
        name="Test playbook",
        trigger_type="alert.created",
        steps=[s if isinstance(s, PlaybookStep) else PlaybookStep(*s) for s in steps],
        **kwargs,
    )


@pytest.fixture
def actions():
    from soc_automation.actions.registry import ActionRegistry

    registry = ActionRegistry()
    registry.register(RecordAction())
    registry.register(ContainAction())
    return registry


@pytest.fixture
def executor(actions, repository, broadcaster):
    from soc_automation.orchestrator.executor import PlaybookExecutor

    return PlaybookExecutor(actions, repository, broadcaster=broadcaster)


class TestStepSequencing:
    """Tests for ordered step execution and failure handling."""

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self, executor, repository):
        from soc_automation.events import alert_created
        from soc_automation.store.models import ExecutionStatus, TriggerSource

        playbook = make_playbook(("record", {"value": "{{ alert_id }}"}), ("record", {"value": 2}))
        repository.save_playbook(playbook)

        execution = await executor.execute(
            playbook, event=alert_created("a-1", 3, "high"), trigger_source=TriggerSource.ALERT
        )

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.error is None
        assert execution.organization_id == 3
        assert execution.trigger_entity_id == "a-1"
        assert [s.index for s in execution.step_results] == [0, 1]
        assert execution.step_results[0].result.data == {"value": "a-1"}
        assert execution.completed_at is not None

        stored = repository.get_execution(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert len(stored.step_results) == 2
        assert repository.get_playbook("pb-1").execution_count == 1

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_later_steps(self, executor, actions):
        from soc_automation.store.models import ExecutionStatus

        playbook = make_playbook(
            ("record", {"value": 1}),
            ("record", {"fail": True}),
            ("record", {"value": 3}),
        )

        execution = await executor.execute(playbook)

        assert execution.status == ExecutionStatus.FAILED
        assert [s.success for s in execution.step_results] == [True, False, True]
        assert execution.error.startswith("Step 1 (record) failed")
        assert len(actions.get_action("record").calls) == 3

    @pytest.mark.asyncio
    async def test_unknown_action_fails_step(self, executor):
        from soc_automation.exceptions import ErrorCode
        from soc_automation.store.models import ExecutionStatus

        execution = await executor.execute(make_playbook(("nope", {}), ("record", {"value": 1})))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.step_results[0].result.error_code == ErrorCode.ACTION_NOT_FOUND
        assert execution.step_results[1].success

    @pytest.mark.asyncio
    async def test_remediation_failure_aborts(self, executor, actions):
        from soc_automation.store.models import ExecutionStatus, PlaybookStep

        playbook = make_playbook(
            PlaybookStep("contain", {"fail": True}, abort_on_failure=True),
            ("record", {"value": "never"}),
        )

        execution = await executor.execute(playbook)

        assert execution.status == ExecutionStatus.FAILED
        assert len(execution.step_results) == 1
        assert execution.error.startswith("Aborted at step 0 (contain)")
        assert actions.get_action("record").calls == []

    @pytest.mark.asyncio
    async def test_result_can_request_abort(self, executor):
        playbook = make_playbook(("contain", {"fail": True, "abort": True}), ("record", {}))

        execution = await executor.execute(playbook)

        assert len(execution.step_results) == 1

    @pytest.mark.asyncio
    async def test_non_remediation_failure_never_aborts(self, executor):
        from soc_automation.store.models import PlaybookStep

        playbook = make_playbook(
            PlaybookStep("record", {"fail": True, "abort": True}, abort_on_failure=True),
            ("record", {}),
        )

        execution = await executor.execute(playbook)

        assert len(execution.step_results) == 2

    @pytest.mark.asyncio
    async def test_remediation_failure_without_abort_continues(self, executor):
        playbook = make_playbook(("contain", {"fail": True}), ("record", {}))

        execution = await executor.execute(playbook)

        assert len(execution.step_results) == 2

    @pytest.mark.asyncio
    async def test_empty_playbook_fails(self, executor, repository):
        from soc_automation.store.models import ExecutionStatus

        execution = await executor.execute(make_playbook(is_active=False))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error == "Playbook has no steps"
        assert execution.step_results == []
        assert repository.get_execution(execution.id).status == ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_step_timeout(self, executor):
        from soc_automation.exceptions import ErrorCode
        from soc_automation.store.models import PlaybookStep

        playbook = make_playbook(PlaybookStep("record", {"delay": 5}, timeout=0.05))

        execution = await executor.execute(playbook)

        assert execution.step_results[0].result.error_code == ErrorCode.TIMEOUT


class TestVariables:
    """Tests for variables flowing between steps."""

    @pytest.mark.asyncio
    async def test_outputs_feed_later_steps(self, executor, actions):
        from soc_automation.events import alert_created

        playbook = make_playbook(
            ("record", {"output": {"rule_id": "fw-1"}}),
            ("record", {"value": "{{ rule_id }}/{{ steps.0.data.rule_id }}/{{ severity }}"}),
        )

        await executor.execute(playbook, event=alert_created("a-1", 1, "critical"))

        params, context = actions.get_action("record").calls[1]
        assert params.value == "fw-1/fw-1/critical"
        assert context.data["rule_id"] == "fw-1"
        assert context.data["event"]["entity_id"] == "a-1"
        assert context.playbook_id == "pb-1"

    @pytest.mark.asyncio
    async def test_manual_variables_and_user(self, executor, actions):
        playbook = make_playbook(("record", {"value": "{{ hostname }}"}))

        await executor.execute(playbook, triggered_by="analyst-7", variables={"hostname": "ws-9"})

        params, context = actions.get_action("record").calls[0]
        assert params.value == "ws-9"
        assert context.user_id == "analyst-7"

    @pytest.mark.asyncio
    async def test_enrichment_hook(self, actions, repository):
        from soc_automation.events import alert_created
        from soc_automation.orchestrator.executor import PlaybookExecutor

        async def enrich(event, playbook):
            return {"verdict": "malicious", "confidence": 0.93}

        executor = PlaybookExecutor(actions, repository, enrichment=enrich)
        await executor.execute(
            make_playbook(("record", {"value": "{{ verdict }}"})),
            event=alert_created("a-1", 1, "high"),
        )

        params, context = actions.get_action("record").calls[0]
        assert params.value == "malicious"
        assert context.data["confidence"] == 0.93

    @pytest.mark.asyncio
    async def test_failing_enrichment_is_ignored(self, actions, repository):
        from soc_automation.orchestrator.executor import PlaybookExecutor
        from soc_automation.store.models import ExecutionStatus

        def enrich(event, playbook):
            raise RuntimeError("model offline")

        executor = PlaybookExecutor(actions, repository, enrichment=enrich)
        execution = await executor.execute(make_playbook(("record", {"value": 1})))

        assert execution.status == ExecutionStatus.COMPLETED


class TestStepConditions:
    """Tests for per-step ``if`` conditions."""

    @pytest.mark.asyncio
    async def test_false_condition_skips_step(self, executor, actions, broadcaster):
        from soc_automation.events import alert_created
        from soc_automation.store.models import ExecutionStatus, PlaybookStep

        playbook = make_playbook(
            PlaybookStep("record", {"value": "page"}, condition="severity == 'critical'"),
            PlaybookStep("record", {"value": "ticket"}, condition={"severity": ["high", "critical"]}),
            organization_id=1,
        )

        execution = await executor.execute(playbook, event=alert_created("a-1", 1, "high"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert [s.skipped for s in execution.step_results] == [True, False]
        assert execution.step_results[0].to_dict()["skipped"] is True
        assert [c[0].value for c in actions.get_action("record").calls] == ["ticket"]
        assert "step:skipped" in [m["event"] for m in broadcaster.messages_for("org:1")]

    @pytest.mark.asyncio
    async def test_condition_on_earlier_step_outcome(self, executor, actions):
        from soc_automation.store.models import PlaybookStep

        playbook = make_playbook(
            ("record", {"fail": True}),
            PlaybookStep("record", {"value": "fallback"}, condition="steps.0.success == false"),
            PlaybookStep("record", {"value": "followup"}, condition="steps.0.success == true"),
        )

        execution = await executor.execute(playbook)

        assert [s.skipped for s in execution.step_results] == [False, False, True]
        assert [c[0].value for c in actions.get_action("record").calls] == [None, "fallback"]

    @pytest.mark.asyncio
    async def test_broken_condition_skips_step(self, executor, actions):
        from soc_automation.store.models import ExecutionStatus, PlaybookStep

        playbook = make_playbook(
            PlaybookStep("record", {"value": 1}, condition="risk_score >= 'high'"),
            ("record", {"value": 2}),
        )

        execution = await executor.execute(playbook, variables={"risk_score": 70})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.step_results[0].skipped is True
        assert [c[0].value for c in actions.get_action("record").calls] == [2]


class TestStepRetries:
    """Tests for bounded step retries."""

    @pytest.fixture
    def flaky_executor(self, actions, repository):
        from soc_automation.orchestrator.executor import PlaybookExecutor

        actions.register(FlakyAction())
        return PlaybookExecutor(actions, repository, retry_delay=0)

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, flaky_executor, actions):
        from soc_automation.store.models import ExecutionStatus, PlaybookStep

        execution = await flaky_executor.execute(
            make_playbook(PlaybookStep("flaky", {"failures": 2}, retries=3))
        )

        step = execution.step_results[0]
        assert execution.status == ExecutionStatus.COMPLETED
        assert step.attempts == 3
        assert step.result.data == {"attempt": 3}
        assert step.to_dict()["attempts"] == 3
        assert actions.get_action("flaky").calls == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, flaky_executor, actions):
        from soc_automation.store.models import ExecutionStatus, PlaybookStep

        execution = await flaky_executor.execute(
            make_playbook(PlaybookStep("flaky", {"failures": 10}, retries=2))
        )

        assert execution.status == ExecutionStatus.FAILED
        assert execution.step_results[0].attempts == 3
        assert actions.get_action("flaky").calls == 3

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, flaky_executor, actions):
        from soc_automation.store.models import PlaybookStep

        execution = await flaky_executor.execute(
            make_playbook(PlaybookStep("flaky", {"failures": 1, "error_code": "permission_denied"}, retries=3))
        )

        assert execution.step_results[0].attempts == 1
        assert actions.get_action("flaky").calls == 1

    @pytest.mark.asyncio
    async def test_back_off_doubles(self, actions, repository, monkeypatch):
        from soc_automation.orchestrator import executor as executor_module
        from soc_automation.store.models import PlaybookStep

        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr(executor_module.asyncio, "sleep", fake_sleep)
        actions.register(FlakyAction())
        executor = executor_module.PlaybookExecutor(actions, repository, retry_delay=4.0)

        await executor.execute(make_playbook(PlaybookStep("flaky", {"failures": 5}, retries=4)))

        assert delays == [4.0, 8.0, 10.0, 10.0]


class TestBroadcasts:
    """Tests for live execution updates."""

    @pytest.mark.asyncio
    async def test_event_sequence(self, executor, broadcaster):
        execution = await executor.execute(
            make_playbook(("record", {}), ("record", {"fail": True}), organization_id=4)
        )

        org_events = [m["event"] for m in broadcaster.messages_for("org:4")]
        assert org_events == [
            "execution:started",
            "step:started",
            "step:completed",
            "step:started",
            "step:failed",
            "execution:failed",
        ]
        exec_messages = broadcaster.messages_for(f"execution:{execution.id}")
        assert len(exec_messages) == len(org_events)
        assert all(m["execution_id"] == execution.id for m in exec_messages)
        assert exec_messages[-1]["data"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_break_execution(self, actions, repository):
        from soc_automation.orchestrator.executor import PlaybookExecutor
        from soc_automation.realtime.broadcast import Broadcaster
        from soc_automation.store.models import ExecutionStatus

        class BrokenBroadcaster(Broadcaster):
            def broadcast(self, channel, payload):
                raise ConnectionError("socket closed")

        executor = PlaybookExecutor(actions, repository, broadcaster=BrokenBroadcaster())
        execution = await executor.execute(make_playbook(("record", {})))

        assert execution.status == ExecutionStatus.COMPLETED


class TestScheduling:
    """Tests for background submission."""

    @pytest.mark.asyncio
    async def test_submit_runs_concurrently(self, executor, repository):
        first = executor.submit(make_playbook(("record", {"delay": 0.05}), playbook_id="pb-a"))
        second = executor.submit(make_playbook(("record", {"delay": 0.05}), playbook_id="pb-b"))

        assert executor.in_flight == 2
        assert executor.is_running("pb-a")

        await executor.wait_idle()

        assert first.done() and second.done()
        assert executor.in_flight == 0
        assert len(repository.list_executions()) == 2

    @pytest.mark.asyncio
    async def test_dedupe_skips_running_playbook(self, actions, repository):
        from soc_automation.orchestrator.executor import PlaybookExecutor

        executor = PlaybookExecutor(actions, repository, dedupe_inflight=True)
        playbook = make_playbook(("record", {"delay": 0.05}))

        assert executor.submit(playbook) is not None
        assert executor.submit(playbook) is None

        await executor.wait_idle()
        assert executor.submit(playbook) is not None
        await executor.wait_idle()
        assert len(repository.list_executions()) == 2

    @pytest.mark.asyncio
    async def test_without_dedupe_both_run(self, executor, repository):
        playbook = make_playbook(("record", {"delay": 0.01}))

        executor.submit(playbook)
        executor.submit(playbook)
        await executor.wait_idle()

        assert len(repository.list_executions(playbook_id="pb-1")) == 2
