"""
Trigger Listener Tests
======================
Branch filtering, one-run-per-pair with supersede-on-queue, duplicate
suppression and independence of separate branch pairs.
"""
import asyncio
import pytest

from fakes import FakeNotifier, FakeRunner, FakeVCS, make_config
from mergegate.agents.orchestrator import Orchestrator
from mergegate.agents.promotion_stage import PromotionStage
from mergegate.agents.trigger_listener import SubmitDecision, TriggerListener
from mergegate.models.push_event import BranchPair, PushEvent

PAIR = BranchPair("new", "main")


def _push(commit, branch="new"):
    return PushEvent(branch=branch, commit=commit)


class RecordingHandler:
    """Records handled commits; blocks on the commits given in `hold`."""

    def __init__(self, hold=()):
        self.handled = []
        self.started = {c: asyncio.Event() for c in hold}
        self.release = {c: asyncio.Event() for c in hold}

    async def __call__(self, event):
        self.handled.append(event.commit)
        if event.commit in self.release:
            self.started[event.commit].set()
            await self.release[event.commit].wait()


def test_other_branches_ignored():
    async def run_test():
        listener = TriggerListener()
        handler = RecordingHandler()
        listener.register(PAIR, handler)

        assert listener.submit(_push("abc123", branch="feature/x")) is SubmitDecision.IGNORED
        assert listener.submit(_push("abc123", branch="main")) is SubmitDecision.IGNORED
        await listener.wait_idle()
        assert handler.handled == []

    asyncio.run(run_test())


def test_malformed_events_ignored():
    async def run_test():
        listener = TriggerListener()
        handler = RecordingHandler()
        listener.register(PAIR, handler)

        assert listener.submit(None) is SubmitDecision.IGNORED
        assert listener.submit({"branch": "new"}) is SubmitDecision.IGNORED
        await listener.wait_idle()
        assert handler.handled == []

    asyncio.run(run_test())


def test_queued_push_superseded_by_newer():
    async def run_test():
        listener = TriggerListener()
        handler = RecordingHandler(hold=["c0"])
        listener.register(PAIR, handler)

        assert listener.submit(_push("c0")) is SubmitDecision.STARTED
        await handler.started["c0"].wait()

        assert listener.submit(_push("c1")) is SubmitDecision.QUEUED
        assert listener.submit(_push("c2")) is SubmitDecision.SUPERSEDED
        assert listener.snapshot() == [{
            "source_branch": "new", "target_branch": "main",
            "active_commit": "c0", "queued_commit": "c2",
        }]

        handler.release["c0"].set()
        await listener.wait_idle()

        assert handler.handled == ["c0", "c2"]
        assert listener.snapshot()[0]["active_commit"] is None

    asyncio.run(run_test())


def test_duplicates_do_not_start_runs():
    async def run_test():
        listener = TriggerListener()
        handler = RecordingHandler(hold=["c0"])
        listener.register(PAIR, handler)

        listener.submit(_push("c0"))
        await handler.started["c0"].wait()
        assert listener.submit(_push("c0")) is SubmitDecision.DUPLICATE
        assert listener.submit(_push("c1")) is SubmitDecision.QUEUED
        assert listener.submit(_push("c1")) is SubmitDecision.DUPLICATE

        handler.release["c0"].set()
        await listener.wait_idle()

        # Redelivered after completion
        assert listener.submit(_push("c0")) is SubmitDecision.DUPLICATE
        await listener.wait_idle()
        assert handler.handled == ["c0", "c1"]

    asyncio.run(run_test())


def test_dedup_window_is_bounded():
    async def run_test():
        listener = TriggerListener(dedup_window=2)
        handler = RecordingHandler()
        listener.register(PAIR, handler)

        for commit in ("c0", "c1", "c2"):
            listener.submit(_push(commit))
            await listener.wait_idle()

        # c0 has fallen out of the window
        assert listener.submit(_push("c0")) is SubmitDecision.STARTED
        await listener.wait_idle()
        assert handler.handled == ["c0", "c1", "c2", "c0"]

    asyncio.run(run_test())


def test_pairs_run_independently():
    async def run_test():
        listener = TriggerListener()
        slow = RecordingHandler(hold=["a0"])
        fast = RecordingHandler()
        listener.register(BranchPair("new", "main"), slow)
        listener.register(BranchPair("staging", "release"), fast)

        listener.submit(_push("a0", branch="new"))
        await slow.started["a0"].wait()
        assert listener.submit(_push("b0", branch="staging")) is SubmitDecision.STARTED

        # b0 completes while a0 is still running
        for _ in range(20):
            if fast.handled:
                break
            await asyncio.sleep(0.01)
        assert fast.handled == ["b0"]
        assert slow.handled == ["a0"]

        slow.release["a0"].set()
        await listener.wait_idle()

    asyncio.run(run_test())


def test_handler_exception_does_not_stall_lane():
    async def run_test():
        listener = TriggerListener()
        handled = []

        async def handler(event):
            handled.append(event.commit)
            if event.commit == "bad":
                raise RuntimeError("boom")

        listener.register(PAIR, handler)
        listener.submit(_push("bad"))
        await listener.wait_idle()
        assert listener.submit(_push("good")) is SubmitDecision.STARTED
        await listener.wait_idle()
        assert handled == ["bad", "good"]

    asyncio.run(run_test())


def test_register_validation():
    listener = TriggerListener()
    listener.register(PAIR, RecordingHandler())
    with pytest.raises(ValueError):
        listener.register(BranchPair("new", "release"), RecordingHandler())
    with pytest.raises(ValueError):
        listener.register(BranchPair("main", "main"), RecordingHandler())


def test_supersede_with_orchestrator():
    """c0 blocks in validation; c1 and c2 arrive; only c0 and c2 are validated and promoted."""

    async def run_test():
        block, started = asyncio.Event(), asyncio.Event()
        vcs = FakeVCS()
        runner = FakeRunner(block=block, started=started)
        orchestrator = Orchestrator(
            config=make_config(steps=("build",)),
            vcs=vcs,
            runner=runner,
            notifier=FakeNotifier(),
            workdir="/tmp/clone",
            promotion_stage=PromotionStage(vcs, retry_delay_seconds=0),
        )
        listener = TriggerListener()
        listener.register(PAIR, orchestrator.run)

        listener.submit(_push("c0"))
        await started.wait()
        listener.submit(_push("c1"))
        listener.submit(_push("c2"))
        block.set()
        await listener.wait_idle()

        assert vcs.checkouts == ["c0", "c2"]
        assert [commit for _, commit in vcs.merges] == ["c0", "c2"]
        assert vcs.branches["main"] == "c2"

    asyncio.run(run_test())
