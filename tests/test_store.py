"""
Tests for the playbook repositories and data models
"""

import pytest


def make_playbook(playbook_id="pb-1", **kwargs):
    from soc_automation.store.models import Playbook, PlaybookStep

    defaults = dict(
        name="Block source",
        trigger_type="alert.created",
        trigger_conditions={"severity": ["high", "critical"]},
        steps=[
            PlaybookStep("block_ip", {"ip_address": "{{ source_ip }}", "reason": "auto"},
                         abort_on_failure=True, timeout=15.0),
            PlaybookStep("notify_slack", {"channel": "#soc", "message": "done"}, name="tell soc"),
        ],
    )
    defaults.update(kwargs)
    return Playbook(id=playbook_id, **defaults)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    from soc_automation.store.database import SQLitePlaybookRepository
    from soc_automation.store.repository import InMemoryPlaybookRepository

    if request.param == "memory":
        return InMemoryPlaybookRepository()
    return SQLitePlaybookRepository(str(tmp_path / "nested" / "playbooks.db"))


class TestPlaybookStorage:
    """Tests shared by every repository implementation."""

    def test_save_and_get(self, repo):
        repo.save_playbook(make_playbook())

        loaded = repo.get_playbook("pb-1")

        assert loaded.name == "Block source"
        assert loaded.trigger_conditions == {"severity": ["high", "critical"]}
        assert loaded.steps[0].abort_on_failure is True
        assert loaded.steps[0].timeout == 15.0
        assert loaded.steps[1].name == "tell soc"
        assert repo.get_playbook("missing") is None

    def test_list_active_filters(self, repo):
        repo.save_playbook(make_playbook("pb-a"))
        repo.save_playbook(make_playbook("pb-b", is_active=False))
        repo.save_playbook(make_playbook("pb-c", trigger_type="incident.updated"))
        repo.save_playbook(make_playbook("pb-d", organization_id=2))

        assert {p.id for p in repo.list_active_playbooks()} == {"pb-a", "pb-c", "pb-d"}
        assert {p.id for p in repo.list_active_playbooks("alert.created")} == {"pb-a", "pb-d"}
        assert {p.id for p in repo.list_active_playbooks(organization_id=1)} == {"pb-a", "pb-c"}
        assert {p.id for p in repo.list_active_playbooks(organization_id=2)} == {"pb-a", "pb-c", "pb-d"}

    def test_save_replaces(self, repo):
        repo.save_playbook(make_playbook())
        repo.save_playbook(make_playbook(name="Renamed"))

        assert repo.get_playbook("pb-1").name == "Renamed"

    def test_active_playbook_without_steps_rejected(self, repo):
        from soc_automation.exceptions import PlaybookValidationError

        with pytest.raises(PlaybookValidationError):
            repo.save_playbook(make_playbook(steps=[]))

        repo.save_playbook(make_playbook("draft", steps=[], is_active=False))
        assert repo.get_playbook("draft").steps == []


class TestExecutionStats:
    """Tests for execution counters and the moving average."""

    def test_first_sample_seeds_average(self, repo):
        repo.save_playbook(make_playbook())

        updated = repo.increment_execution_stats("pb-1", 1000.0)

        assert updated.execution_count == 1
        assert updated.avg_execution_time_ms == 1000.0

    def test_weighted_average(self, repo):
        repo.save_playbook(make_playbook())
        repo.increment_execution_stats("pb-1", 1000.0)
        repo.increment_execution_stats("pb-1", 3000.0)

        stored = repo.get_playbook("pb-1")
        assert stored.execution_count == 2
        assert stored.avg_execution_time_ms == pytest.approx(1600.0)

    def test_unknown_playbook(self, repo):
        assert repo.increment_execution_stats("ghost", 10.0) is None


class TestExecutionStorage:
    """Tests for execution records."""

    def test_create_update_get(self, repo):
        from soc_automation.store.models import (
            ActionResult,
            ExecutionStatus,
            PlaybookExecution,
            StepResult,
            TriggerSource,
        )
        from soc_automation.exceptions import ErrorCode

        execution = PlaybookExecution(
            playbook_id="pb-1",
            organization_id=1,
            trigger_source=TriggerSource.ALERT,
            trigger_entity_id="a-1",
        )
        repo.create_execution(execution)

        execution.step_results.append(StepResult(
            index=0,
            action_name="block_ip",
            result=ActionResult.fail("blocked by policy", ErrorCode.PERMISSION_DENIED),
        ))
        execution.status = ExecutionStatus.FAILED
        execution.error = "Step 0 (block_ip) failed: blocked by policy"
        repo.update_execution(execution)

        stored = repo.get_execution(execution.id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.trigger_source == TriggerSource.ALERT
        assert stored.step_results[0].result.error_code == ErrorCode.PERMISSION_DENIED
        assert stored.error.startswith("Step 0")

    def test_update_unknown_execution(self, repo):
        from soc_automation.store.models import PlaybookExecution

        with pytest.raises(KeyError):
            repo.update_execution(PlaybookExecution(playbook_id="pb-1"))

    def test_list_newest_first(self, repo):
        from soc_automation.store.models import PlaybookExecution

        for i, started in enumerate(["2026-01-01T00:00:00Z", "2026-01-03T00:00:00Z", "2026-01-02T00:00:00Z"]):
            repo.create_execution(PlaybookExecution(
                playbook_id="pb-1" if i < 2 else "pb-2",
                id=f"exec-{i}",
                started_at=started,
            ))

        assert [e.id for e in repo.list_executions()] == ["exec-1", "exec-2", "exec-0"]
        assert [e.id for e in repo.list_executions(playbook_id="pb-1")] == ["exec-1", "exec-0"]
        assert len(repo.list_executions(limit=1)) == 1


class TestModels:
    """Tests for model helpers."""

    def test_playbook_dict_round_trip(self):
        from soc_automation.store.models import Playbook

        playbook = make_playbook(organization_id=3)
        restored = Playbook.from_dict(playbook.to_dict())

        assert restored.to_dict() == playbook.to_dict()

    def test_callable_conditions_not_serialized(self):
        playbook = make_playbook(trigger_conditions=lambda data: True)

        assert playbook.to_dict()["trigger_conditions"] is None

    def test_step_accepts_alternate_keys(self):
        from soc_automation.store.models import PlaybookStep

        step = PlaybookStep.from_dict({"action_name": "notify_email", "with": {"to": ["a@b.c"]}})

        assert step.action_name == "notify_email"
        assert step.parameters == {"to": ["a@b.c"]}

    def test_step_condition_and_retries(self):
        from soc_automation.store.models import PlaybookStep

        step = PlaybookStep.from_dict({"action": "block_ip", "if": "severity == 'critical'", "retries": 2})

        assert step.condition == "severity == 'critical'"
        assert step.retries == 2
        assert step.to_dict()["if"] == "severity == 'critical'"

    @pytest.mark.parametrize("retries", [-1, 6])
    def test_step_retries_out_of_range(self, retries):
        from soc_automation.exceptions import PlaybookValidationError
        from soc_automation.store.models import PlaybookStep

        playbook = make_playbook()
        playbook.steps.append(PlaybookStep("notify_slack", retries=retries))

        with pytest.raises(PlaybookValidationError):
            playbook.validate()

    @pytest.mark.parametrize("value,rank", [
        ("low", 1), ("MEDIUM", 2), ("high", 3), ("critical", 4), ("bogus", 1), (None, 1),
    ])
    def test_severity_rank(self, value, rank):
        from soc_automation.store.models import severity_rank

        assert severity_rank(value) == rank

    def test_action_result_serialization(self):
        from soc_automation.exceptions import ErrorCode
        from soc_automation.store.models import ActionResult

        result = ActionResult.fail("nope", ErrorCode.TIMEOUT, abort_playbook=True)

        assert result.to_dict() == {
            "success": False,
            "error": "nope",
            "error_code": "timeout",
            "abort_playbook": True,
        }
        assert ActionResult.from_dict(result.to_dict()) == result
