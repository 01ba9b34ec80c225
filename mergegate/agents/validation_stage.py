"""
Validation Stage
================
Runs the configured validation steps against the exact commit of a run and
produces its ValidationResult.

Algorithm:
    1. Check out the run's commit in the working clone.
       A checkout/fetch failure is recorded as a failed "checkout" step.
    2. Run each step in order.
    3. Stop at the first step that exits non-zero, times out or cannot start.
       Later steps are not run and do not appear in the result.

Isolation:
    This stage never writes to the target branch. Its only side effects are
    the working-clone checkout and the compute time of the steps.
"""
import asyncio
import logging
from typing import Optional, Sequence

from mergegate.agents.git_agent import VersionControl
from mergegate.core.config import OUTPUT_EXCERPT_LINES, OUTPUT_EXCERPT_MAX_CHARS
from mergegate.core.constants import EXIT_INFRASTRUCTURE, STEP_CHECKOUT
from mergegate.core.errors import GitCommandError, InvalidTransition
from mergegate.executor.step_runner import StepExecution, StepRunner, create_log_excerpt
from mergegate.models.pipeline_run import PipelineRun, RunStage
from mergegate.models.step_result import StepResult, ValidationResult
from mergegate.parser.pipeline_config import ValidationStep

logger = logging.getLogger(__name__)


class ValidationStage:

    def __init__(
        self,
        runner: StepRunner,
        steps: Sequence[ValidationStep],
        workdir: str,
        vcs: Optional[VersionControl] = None,
        excerpt_lines: int = OUTPUT_EXCERPT_LINES,
        excerpt_max_chars: int = OUTPUT_EXCERPT_MAX_CHARS,
    ) -> None:
        if not steps:
            raise ValueError("At least one validation step is required")
        self.runner = runner
        self.steps = tuple(steps)
        self.workdir = workdir
        self.vcs = vcs
        self.excerpt_lines = excerpt_lines
        self.excerpt_max_chars = excerpt_max_chars

    def _to_step_result(self, name: str, execution: StepExecution) -> StepResult:
        output = execution.output
        if execution.error and execution.error not in output:
            output = f"{output}\n{execution.error}" if output else execution.error
        return StepResult(
            name=name,
            exit_code=execution.exit_code,
            output_excerpt=create_log_excerpt(output, self.excerpt_lines, self.excerpt_max_chars),
            duration_seconds=execution.duration_seconds,
            timed_out=execution.timed_out,
            error=execution.error,
        )

    async def _prepare(self, commit: str) -> Optional[StepResult]:
        """Check out `commit`; return a failed step result if that is impossible."""
        if self.vcs is None:
            return None
        try:
            await asyncio.to_thread(self.vcs.checkout, commit)
        except (GitCommandError, OSError) as e:
            logger.error("Could not check out %s: %s", commit[:12], e)
            return StepResult(
                name=STEP_CHECKOUT,
                exit_code=EXIT_INFRASTRUCTURE,
                output_excerpt=str(e),
                error=str(e),
            )
        return None

    async def _run_step(self, step: ValidationStep) -> StepResult:
        try:
            execution = await self.runner.run(step, self.workdir)
        except Exception as e:
            # Runners report failures as results; an exception here is an infrastructure failure
            logger.exception("Runner crashed on step '%s'", step.name)
            execution = StepExecution(error=f"{type(e).__name__}: {e}")
        return self._to_step_result(step.name, execution)

    async def validate(self, run: PipelineRun) -> ValidationResult:
        """
        Validate `run.commit`. The run must already be in the validating stage.
        """
        if run.stage is not RunStage.VALIDATING:
            raise InvalidTransition(run.stage.value, RunStage.VALIDATING.value)

        logger.info(
            "[%s] Validating %s with %d step(s)", run.run_id, run.commit[:12], len(self.steps)
        )

        checkout_failure = await self._prepare(run.commit)
        if checkout_failure is not None:
            return ValidationResult(steps=[checkout_failure], success=False)

        results: list[StepResult] = []
        for i, step in enumerate(self.steps, 1):
            logger.info("[%s] Step %d/%d: %s", run.run_id, i, len(self.steps), step.name)
            result = await self._run_step(step)
            results.append(result)

            if not result.passed:
                logger.warning(
                    "[%s] Step '%s' failed (exit %d%s), skipping %d remaining step(s)",
                    run.run_id, step.name, result.exit_code,
                    ", timed out" if result.timed_out else "",
                    len(self.steps) - i,
                )
                return ValidationResult(steps=results, success=False)

        logger.info("[%s] All %d step(s) passed", run.run_id, len(results))
        return ValidationResult(steps=results, success=True)
