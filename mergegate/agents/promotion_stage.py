"""
Promotion Stage
===============
Merges the validated commit into the target branch and pushes it.

Invariant:
    The commit merged is always `run.commit`, the exact commit that passed
    validation, never the current tip of the source branch. New pushes to the
    source branch during a run cannot slip into the target unvalidated.

Algorithm:
    fetch target → merge run.commit onto it (fast-forward when possible)
    → push. A merge conflict or rejected push re-fetches and retries the
    whole cycle up to `retry_limit` more times, then gives up with a
    promotion-conflict FailureReport.

Only this stage writes to the target branch.
"""
import time
import logging
from typing import Union

from mergegate.agents.git_agent import VersionControl
from mergegate.core.config import PROMOTION_RETRY_DELAY_SECONDS, PROMOTION_RETRY_LIMIT
from mergegate.core.errors import GitCommandError, InvalidTransition
from mergegate.core.report_formatter import format_merge_commit_message, format_promotion_summary
from mergegate.models.pipeline_run import PipelineRun, RunStage
from mergegate.models.reports import FailureCategory, FailureReport, PromotionRecord

logger = logging.getLogger(__name__)

PromotionOutcome = Union[PromotionRecord, FailureReport]


class PromotionStage:

    def __init__(
        self,
        vcs: VersionControl,
        retry_limit: int = PROMOTION_RETRY_LIMIT,
        retry_delay_seconds: float = PROMOTION_RETRY_DELAY_SECONDS,
    ) -> None:
        self.vcs = vcs
        self.retry_limit = max(0, retry_limit)
        self.retry_delay_seconds = retry_delay_seconds

    def _changed_paths(self, old_ref: str, new_ref: str) -> list[str]:
        # Best effort: a diff failure never undoes a successful push
        try:
            return self.vcs.changed_paths(old_ref, new_ref)
        except GitCommandError as e:
            logger.warning("Could not list changed paths %s..%s: %s", old_ref[:12], new_ref[:12], e)
            return []

    def promote(self, run: PipelineRun) -> PromotionOutcome:
        """
        Promote `run.commit` into `run.target_branch`.

        Returns a PromotionRecord on success, or a FailureReport with
        category PROMOTION_CONFLICT once all attempts are used up.
        """
        if run.stage is not RunStage.PROMOTING:
            raise InvalidTransition(run.stage.value, RunStage.PROMOTING.value)
        if run.validation is None or not run.validation.success:
            raise InvalidTransition(run.stage.value, "promote without successful validation")

        commit, target = run.commit, run.target_branch
        message = format_merge_commit_message(commit, run.source_branch, target)
        max_attempts = 1 + self.retry_limit
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            try:
                target_ref = self.vcs.fetch(target)
                outcome = self.vcs.merge(target_ref, commit, message)

                if outcome.conflict:
                    last_error = f"merge conflict on {target}: {outcome.detail}".rstrip(": ")
                elif self.vcs.push(target, outcome.ref):
                    changed = self._changed_paths(target_ref, outcome.ref)
                    logger.info(
                        "[%s] Promoted %s into %s as %s (attempt %d)",
                        run.run_id, commit[:12], target, outcome.ref[:12], attempt,
                    )
                    return PromotionRecord(
                        commit=commit,
                        target_branch=target,
                        previous_target_ref=target_ref,
                        merged_ref=outcome.ref,
                        fast_forward=outcome.fast_forward,
                        changed_paths=changed,
                        attempts=attempt,
                        summary=format_promotion_summary(
                            commit, run.source_branch, target, changed, outcome.fast_forward
                        ),
                    )
                else:
                    last_error = f"push to {target} rejected"
            except GitCommandError as e:
                last_error = str(e)

            logger.warning(
                "[%s] Promotion attempt %d/%d failed: %s",
                run.run_id, attempt, max_attempts, last_error,
            )
            if attempt < max_attempts and self.retry_delay_seconds > 0:
                time.sleep(self.retry_delay_seconds)

        logger.error("[%s] Promotion of %s abandoned after %d attempt(s)", run.run_id, commit[:12], max_attempts)
        return FailureReport(
            category=FailureCategory.PROMOTION_CONFLICT,
            commit=commit,
            source_branch=run.source_branch,
            target_branch=target,
            message=f"Promotion failed after {max_attempts} attempt(s): {last_error}",
        )
