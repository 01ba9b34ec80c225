"""
Trigger Listener
================
Accepts push events and starts pipeline runs, one branch pair at a time.

Policy per (source, target) pair:
    - Only pushes to the registered source branch start runs. Anything else
      is ignored: no run, no error.
    - At most one run is active. A push that arrives meanwhile is queued.
    - Only the latest queued push is kept: a newer push supersedes the
      queued one. The active run is never cancelled.
    - A commit already active, queued, or recently processed is a duplicate
      (redelivered webhooks never start a second run).

Runs for different pairs proceed concurrently as independent tasks.
"""
import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from mergegate.core.config import DEDUP_WINDOW
from mergegate.models.push_event import BranchPair, PushEvent

logger = logging.getLogger(__name__)

RunHandler = Callable[[PushEvent], Awaitable[Any]]


class SubmitDecision(str, Enum):
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    STARTED = "started"
    QUEUED = "queued"
    SUPERSEDED = "superseded"


class _Lane:
    """Run slot + single-entry queue for one branch pair."""

    def __init__(self, pair: BranchPair, handler: RunHandler, dedup_window: int) -> None:
        self.pair = pair
        self.handler = handler
        self.active: Optional[PushEvent] = None
        self.pending: Optional[PushEvent] = None
        self.task: Optional[asyncio.Task] = None
        self._recent: Deque[str] = deque(maxlen=max(1, dedup_window))
        self._recent_set: Set[str] = set()

    def seen(self, commit: str) -> bool:
        return (
            (self.active is not None and self.active.commit == commit)
            or (self.pending is not None and self.pending.commit == commit)
            or commit in self._recent_set
        )

    def remember(self, commit: str) -> None:
        if len(self._recent) == self._recent.maxlen:
            self._recent_set.discard(self._recent[0])
        self._recent.append(commit)
        self._recent_set.add(commit)


class TriggerListener:

    def __init__(self, dedup_window: int = DEDUP_WINDOW) -> None:
        self.dedup_window = dedup_window
        self._lanes: Dict[str, _Lane] = {}

    def register(self, pair: BranchPair, handler: RunHandler) -> None:
        """Route pushes on `pair.source` to `handler` (usually Orchestrator.run)."""
        if pair.source in self._lanes:
            raise ValueError(f"Source branch '{pair.source}' is already registered")
        if pair.source == pair.target:
            raise ValueError("Source and target branch must differ")
        self._lanes[pair.source] = _Lane(pair, handler, self.dedup_window)
        logger.info("Listening for pushes on %s", pair)

    def submit(self, event: Any) -> SubmitDecision:
        """
        Offer an event. Must be called from the running event loop.
        Never raises for malformed or irrelevant events.
        """
        if not isinstance(event, PushEvent):
            logger.debug("Ignoring non-push event: %r", event)
            return SubmitDecision.IGNORED

        lane = self._lanes.get(event.branch)
        if lane is None:
            logger.debug("Ignoring push to unwatched branch %s", event.branch)
            return SubmitDecision.IGNORED

        if lane.seen(event.commit):
            logger.info("Duplicate push of %s on %s, ignoring", event.commit[:12], lane.pair)
            return SubmitDecision.DUPLICATE

        if lane.task is None:
            lane.active = event
            lane.task = asyncio.create_task(self._drain(lane), name=f"mergegate:{lane.pair}")
            logger.info("Starting run for %s on %s", event.commit[:12], lane.pair)
            return SubmitDecision.STARTED

        if lane.pending is not None:
            logger.info(
                "Queued %s superseded by %s on %s",
                lane.pending.commit[:12], event.commit[:12], lane.pair,
            )
            lane.pending = event
            return SubmitDecision.SUPERSEDED

        lane.pending = event
        logger.info(
            "Run for %s in progress on %s, queued %s",
            lane.active.commit[:12] if lane.active else "?", lane.pair, event.commit[:12],
        )
        return SubmitDecision.QUEUED

    async def _drain(self, lane: _Lane) -> None:
        """Run the active event, then whatever is queued, until the lane is empty."""
        while lane.active is not None:
            event = lane.active
            try:
                await lane.handler(event)
            except Exception:
                # Orchestrator.run never raises; a custom handler might
                logger.exception("Run handler failed for %s on %s", event.commit[:12], lane.pair)
            finally:
                lane.remember(event.commit)
            lane.active, lane.pending = lane.pending, None
        lane.task = None

    async def wait_idle(self) -> None:
        """Wait until every lane has drained, including runs queued meanwhile."""
        while True:
            tasks = [lane.task for lane in self._lanes.values() if lane.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [
            {
                "source_branch": lane.pair.source,
                "target_branch": lane.pair.target,
                "active_commit": lane.active.commit if lane.active else None,
                "queued_commit": lane.pending.commit if lane.pending else None,
            }
            for lane in self._lanes.values()
        ]
