"""
Orchestrator Tests
==================
End-to-end runs against fake capabilities: promotion, blocked validation,
promotion conflict and unexpected errors, plus persistence of the outcome.
"""
import asyncio
import json

from fakes import FakeNotifier, FakeRunner, FakeVCS, make_config
from mergegate.agents.orchestrator import Orchestrator
from mergegate.agents.promotion_stage import PromotionStage
from mergegate.models.pipeline_run import RunOutcome, RunStage
from mergegate.models.push_event import PushEvent
from mergegate.models.reports import FailureCategory
from mergegate.services.results_writer import ResultsWriter
from mergegate.services.run_store import RunStore


def _orchestrator(vcs=None, runner=None, notifier=None, **kwargs):
    vcs = vcs or FakeVCS()
    return Orchestrator(
        config=make_config(),
        vcs=vcs,
        runner=runner or FakeRunner(),
        notifier=notifier or FakeNotifier(),
        workdir="/tmp/clone",
        promotion_stage=PromotionStage(vcs, retry_limit=1, retry_delay_seconds=0),
        **kwargs,
    )


def _push(commit):
    return PushEvent(branch="new", commit=commit)


def test_passing_commit_is_promoted():
    vcs = FakeVCS(branches={"main": "base000", "new": "abc123"})
    notifier = FakeNotifier()
    orchestrator = _orchestrator(vcs=vcs, notifier=notifier)

    run = asyncio.run(orchestrator.run(_push("abc123")))

    assert run.outcome is RunOutcome.PROMOTED
    assert run.stage is RunStage.COMPLETED
    assert run.promotion.commit == "abc123"
    assert run.failure is None
    assert vcs.branches["main"] == "abc123"
    assert vcs.checkouts == ["abc123"]
    assert [s.name for s in run.validation.steps] == ["install", "build", "test"]
    # Nothing is posted for a successful run
    assert notifier.posts == []


def test_failing_build_is_blocked():
    vcs = FakeVCS(branches={"main": "base000", "new": "def456"})
    runner = FakeRunner(exit_codes={"build": 1})
    notifier = FakeNotifier()
    orchestrator = _orchestrator(vcs=vcs, runner=runner, notifier=notifier)

    run = asyncio.run(orchestrator.run(_push("def456")))

    assert run.outcome is RunOutcome.BLOCKED
    assert run.stage is RunStage.COMPLETED
    assert run.failure.category is FailureCategory.VALIDATION_FAILURE
    assert run.failure.failing_step == "build"
    assert run.failure.exit_code == 1
    assert run.notification_delivered is True
    assert runner.calls == ["install", "build"]
    assert vcs.branches["main"] == "base000"
    assert vcs.pushes == []
    assert len(notifier.posts) == 1


def test_rejected_push_twice_is_promotion_conflict():
    vcs = FakeVCS(branches={"main": "base000", "new": "ghi789"}, push_results=[False, False])
    notifier = FakeNotifier()
    orchestrator = _orchestrator(vcs=vcs, notifier=notifier)

    run = asyncio.run(orchestrator.run(_push("ghi789")))

    assert run.outcome is RunOutcome.BLOCKED
    assert run.stage is RunStage.FAILED
    assert run.failure.category is FailureCategory.PROMOTION_CONFLICT
    assert run.promotion is None
    assert len(vcs.pushes) == 2
    assert vcs.branches["main"] == "base000"
    assert "Promotion conflict" in notifier.posts[0][1]
    assert [t.stage for t in run.stage_history] == [
        RunStage.PENDING, RunStage.VALIDATING, RunStage.PROMOTING, RunStage.NOTIFYING, RunStage.FAILED,
    ]


def test_undelivered_notification_keeps_outcome():
    runner = FakeRunner(exit_codes={"test": 2})
    orchestrator = _orchestrator(runner=runner, notifier=FakeNotifier(delivered=False))

    run = asyncio.run(orchestrator.run(_push("def456")))

    assert run.outcome is RunOutcome.BLOCKED
    assert run.failure.failing_step == "test"
    assert run.notification_delivered is False


def test_unexpected_error_is_internal_failure():
    class BrokenVCS(FakeVCS):
        def merge(self, target_ref, commit, message=""):
            raise RuntimeError("object store corrupted")

    notifier = FakeNotifier()
    orchestrator = _orchestrator(vcs=BrokenVCS(), notifier=notifier)

    run = asyncio.run(orchestrator.run(_push("abc123")))

    assert run.outcome is RunOutcome.BLOCKED
    assert run.stage is RunStage.FAILED
    assert run.failure.category is FailureCategory.INTERNAL_ERROR
    assert "object store corrupted" in run.failure.message
    assert "Pipeline error" in notifier.posts[0][1]


def test_run_is_persisted_and_stored(tmp_path):
    writer = ResultsWriter(str(tmp_path))
    store = RunStore(limit=10)
    orchestrator = _orchestrator(results_writer=writer, run_store=store)

    run = asyncio.run(orchestrator.run(_push("abc123")))

    assert store.get(run.run_id) is run
    with open(tmp_path / f"{run.run_id}.json", encoding="utf-8") as f:
        data = json.load(f)
    assert data["outcome"] == "promoted"
    assert data["summary"]["merged_ref"] == "abc123"
    assert writer.read_index()[0]["run_id"] == run.run_id


def test_persistence_failure_does_not_raise(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    orchestrator = _orchestrator(results_writer=ResultsWriter(str(blocker)))

    run = asyncio.run(orchestrator.run(_push("abc123")))

    assert run.outcome is RunOutcome.PROMOTED
