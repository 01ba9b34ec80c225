"""
Orchestrator
============
Drives one PipelineRun through the gated promotion state machine:

    pending → validating → promoting → completed                  (Promoted)
                         → notifying → completed                  (Blocked, validation failure)
              promoting  → notifying → failed                     (Blocked, promotion conflict)
    anything unexpected  → failed                                 (Blocked, internal error)

One method per transition (_validate, _promote, _notify), each independently
testable with fake capabilities.

Fault tolerance:
    Nothing raised inside a stage escapes run(). Every run that starts ends
    with exactly one report (PromotionRecord or FailureReport), is persisted
    by the ResultsWriter and is registered in the RunStore.
"""
import asyncio
import logging
from typing import Optional

from mergegate.agents.git_agent import VersionControl
from mergegate.agents.notification_stage import NotificationStage
from mergegate.agents.promotion_stage import PromotionStage
from mergegate.agents.validation_stage import ValidationStage
from mergegate.core.report_formatter import format_failure_headline
from mergegate.executor.step_runner import StepRunner
from mergegate.models.pipeline_run import PipelineRun, RunStage
from mergegate.models.push_event import PushEvent
from mergegate.models.reports import FailureCategory, FailureReport, PromotionRecord
from mergegate.parser.pipeline_config import PipelineConfig
from mergegate.services.notifier import Notifier
from mergegate.services.results_writer import ResultsWriter
from mergegate.services.run_store import RunStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs the pipeline for one branch pair.

    The caller (TriggerListener) guarantees that at most one run per
    orchestrator is in flight, which serialises all writes to the target
    branch and all use of the working clone.
    """

    def __init__(
        self,
        config: PipelineConfig,
        vcs: VersionControl,
        runner: StepRunner,
        notifier: Notifier,
        workdir: str,
        results_writer: Optional[ResultsWriter] = None,
        run_store: Optional[RunStore] = None,
        promotion_stage: Optional[PromotionStage] = None,
    ) -> None:
        self.config = config
        self.validation = ValidationStage(runner, config.steps, workdir, vcs=vcs)
        self.promotion = promotion_stage or PromotionStage(vcs)
        self.notification = NotificationStage(notifier, config.channel)
        self.results_writer = results_writer
        self.run_store = run_store

    async def run(self, event: PushEvent) -> PipelineRun:
        """Create a run for `event` and execute it to a terminal outcome."""
        run = PipelineRun(
            commit=event.commit,
            source_branch=self.config.source_branch,
            target_branch=self.config.target_branch,
        )
        logger.info(
            "[%s] Run created for %s on %s", run.run_id, run.commit[:12], self.config.branch_pair
        )
        if self.run_store is not None:
            self.run_store.add(run)
        return await self.execute(run)

    async def execute(self, run: PipelineRun) -> PipelineRun:
        try:
            if await self._validate(run):
                await self._promote(run)
            else:
                report = self.notification.build_validation_report(run)
                await self._notify(run, report, RunStage.COMPLETED)
        except Exception as exc:
            logger.error("[%s] Pipeline error in stage %s: %s", run.run_id, run.stage.value, exc, exc_info=True)
            await self._fail_internal(run, exc)

        self._persist(run)
        logger.info(
            "[%s] Run finished: %s (%s)", run.run_id, run.outcome.value, run.stage.value
        )
        return run

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def _validate(self, run: PipelineRun) -> bool:
        run.advance(RunStage.VALIDATING)
        result = await self.validation.validate(run)
        run.attach_validation(result)
        return result.success

    async def _promote(self, run: PipelineRun) -> None:
        run.advance(RunStage.PROMOTING)
        # Git calls block on network I/O; keep the event loop free for other branch pairs
        outcome = await asyncio.to_thread(self.promotion.promote, run)
        if isinstance(outcome, PromotionRecord):
            run.record_promotion(outcome)
            logger.info("[%s] %s", run.run_id, outcome.summary)
        else:
            await self._notify(run, outcome, RunStage.FAILED)

    async def _notify(self, run: PipelineRun, report: FailureReport, terminal: RunStage) -> None:
        run.advance(RunStage.NOTIFYING)
        logger.warning("[%s] %s", run.run_id, format_failure_headline(report))
        delivered = await self.notification.deliver(run, report)
        run.record_failure(report, delivered=delivered, terminal=terminal)

    async def _fail_internal(self, run: PipelineRun, exc: Exception) -> None:
        if run.is_finished:
            return
        failing = run.validation.failing_step if run.validation else None
        report = FailureReport(
            category=FailureCategory.INTERNAL_ERROR,
            commit=run.commit,
            source_branch=run.source_branch,
            target_branch=run.target_branch,
            failing_step=failing.name if failing else None,
            exit_code=failing.exit_code if failing else None,
            message=f"Pipeline error during {run.stage.value}: {type(exc).__name__}: {exc}",
        )
        delivered = await self.notification.deliver(run, report)
        run.record_failure(report, delivered=delivered, terminal=RunStage.FAILED)

    def _persist(self, run: PipelineRun) -> None:
        if self.run_store is not None:
            self.run_store.add(run)
        if self.results_writer is not None and not self.results_writer.write_run(run):
            logger.error("[%s] Run summary could not be persisted: %s", run.run_id, run.summary())
