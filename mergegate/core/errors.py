"""
Errors
======
Exception hierarchy for the promotion pipeline.

Stages convert capability failures (non-zero exits, rejected pushes,
unreachable webhooks) into results rather than raising. These exceptions
signal programming or configuration mistakes; the orchestrator is the
boundary that turns any of them into a Blocked run.
"""


class MergegateError(Exception):
    """Base class for all pipeline errors."""


class PipelineConfigError(MergegateError):
    """Pipeline YAML is missing required fields or is malformed."""


class InvalidTransition(MergegateError):
    """A PipelineRun was asked to move to a stage it cannot reach."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Illegal stage transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class RunFinalized(MergegateError):
    """A PipelineRun was mutated after its outcome was recorded."""


class GitCommandError(MergegateError):
    """A git command exited non-zero or timed out."""

    def __init__(self, command: list[str], stderr: str = "", timed_out: bool = False) -> None:
        label = " ".join(command)
        reason = "timed out" if timed_out else (stderr.strip() or "failed")
        super().__init__(f"{label}: {reason}")
        self.command = command
        self.stderr = stderr
        self.timed_out = timed_out
