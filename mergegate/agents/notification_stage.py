"""
Notification Stage
==================
Turns a blocked run into a FailureReport and delivers it to the feedback
channel.

Rules:
    - The report names the first (and, by stop-on-first-failure, only)
      failing step with its exit code and a bounded output excerpt.
    - Delivery failure is logged and returned as False. It never replaces or
      alters the report; the run still records it locally.
    - This stage never touches version control.
"""
import logging

from mergegate.core.errors import InvalidTransition
from mergegate.core.report_formatter import format_failure_message, format_step_detail
from mergegate.models.pipeline_run import PipelineRun
from mergegate.models.reports import FailureCategory, FailureReport
from mergegate.services.notifier import Notifier

logger = logging.getLogger(__name__)


class NotificationStage:

    def __init__(self, notifier: Notifier, channel: str) -> None:
        self.notifier = notifier
        self.channel = channel

    def build_validation_report(self, run: PipelineRun) -> FailureReport:
        """FailureReport for a run whose validation did not pass."""
        failing = run.validation.failing_step if run.validation else None
        if failing is None:
            raise InvalidTransition(run.stage.value, "notify without a failing validation step")

        return FailureReport(
            category=FailureCategory.VALIDATION_FAILURE,
            commit=run.commit,
            source_branch=run.source_branch,
            target_branch=run.target_branch,
            failing_step=failing.name,
            exit_code=failing.exit_code,
            output_excerpt=failing.output_excerpt,
            message=format_step_detail(failing.name, failing.exit_code, failing.timed_out, failing.error),
        )

    async def deliver(self, run: PipelineRun, report: FailureReport) -> bool:
        """Post `report` to the channel. Returns delivery status, never raises."""
        message = format_failure_message(report)
        try:
            delivered = await self.notifier.post(self.channel, message)
        except Exception:
            logger.exception("[%s] Notifier raised while delivering the failure report", run.run_id)
            delivered = False

        if delivered:
            logger.info("[%s] Failure report delivered to %s", run.run_id, self.channel)
        else:
            logger.error(
                "[%s] Failure report NOT delivered to %s; kept in run record (%s)",
                run.run_id, self.channel, report.category.value,
            )
        return bool(delivered)
