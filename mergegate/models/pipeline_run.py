"""
Pipeline Run Model
==================
One execution of the gated promotion pipeline, as an explicit state machine.

Stages:
    pending → validating → promoting  → completed               (Promoted)
                         ↘ notifying  → completed               (Blocked: validation failure)
                           promoting  → notifying → failed      (Blocked: promotion conflict)
    any non-terminal stage → failed                             (Blocked: internal error)

Ownership:
    A run is owned by the orchestrator task executing it. The trigger
    listener guarantees no two tasks ever hold runs for the same branch pair.

Immutability:
    Once an outcome is recorded the run is frozen: further transitions or
    report attachments raise RunFinalized. Exactly one of `promotion` /
    `failure` is set on every finished run.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from mergegate.core.errors import InvalidTransition, RunFinalized
from mergegate.models.reports import FailureReport, PromotionRecord
from mergegate.models.step_result import ValidationResult


class RunStage(str, Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    PROMOTING = "promoting"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    FAILED = "failed"


class RunOutcome(str, Enum):
    PROMOTED = "promoted"
    BLOCKED = "blocked"


TERMINAL_STAGES = frozenset({RunStage.COMPLETED, RunStage.FAILED})

_TRANSITIONS: Dict[RunStage, frozenset] = {
    RunStage.PENDING: frozenset({RunStage.VALIDATING, RunStage.FAILED}),
    RunStage.VALIDATING: frozenset({RunStage.PROMOTING, RunStage.NOTIFYING, RunStage.FAILED}),
    RunStage.PROMOTING: frozenset({RunStage.COMPLETED, RunStage.NOTIFYING, RunStage.FAILED}),
    RunStage.NOTIFYING: frozenset({RunStage.COMPLETED, RunStage.FAILED}),
    RunStage.COMPLETED: frozenset(),
    RunStage.FAILED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StageTransition(BaseModel):
    stage: RunStage
    at: datetime = Field(default_factory=_now)


class PipelineRun(BaseModel):
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    commit: str
    source_branch: str
    target_branch: str
    started_at: datetime = Field(default_factory=_now)
    finished_at: Optional[datetime] = None

    stage: RunStage = RunStage.PENDING
    outcome: Optional[RunOutcome] = None
    stage_history: List[StageTransition] = Field(
        default_factory=lambda: [StageTransition(stage=RunStage.PENDING)]
    )

    validation: Optional[ValidationResult] = None
    promotion: Optional[PromotionRecord] = None
    failure: Optional[FailureReport] = None
    notification_delivered: Optional[bool] = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    @property
    def is_finished(self) -> bool:
        return self.outcome is not None

    def _ensure_open(self) -> None:
        if self.is_finished:
            raise RunFinalized(f"Run {self.run_id} already finished as {self.outcome.value}")

    def advance(self, stage: RunStage) -> None:
        """Move to `stage`, enforcing the transition table."""
        self._ensure_open()
        if stage not in _TRANSITIONS[self.stage]:
            raise InvalidTransition(self.stage.value, stage.value)
        self.stage = stage
        self.stage_history.append(StageTransition(stage=stage))

    def attach_validation(self, result: ValidationResult) -> None:
        self._ensure_open()
        if self.validation is not None:
            raise RunFinalized(f"Run {self.run_id} already has a validation result")
        self.validation = result

    def record_promotion(self, record: PromotionRecord) -> None:
        """Terminal: the validated commit reached the target branch."""
        self._ensure_open()
        if record.commit != self.commit:
            raise ValueError(
                f"Promotion record for {record.commit} does not match validated commit {self.commit}"
            )
        self.advance(RunStage.COMPLETED)
        self.promotion = record
        self._finish(RunOutcome.PROMOTED)

    def record_failure(
        self,
        report: FailureReport,
        delivered: Optional[bool] = None,
        terminal: RunStage = RunStage.COMPLETED,
    ) -> None:
        """Terminal: promotion was blocked. Delivery status never changes the report."""
        self._ensure_open()
        if terminal not in TERMINAL_STAGES:
            raise InvalidTransition(self.stage.value, terminal.value)
        self.advance(terminal)
        self.failure = report
        self.notification_delivered = delivered
        self._finish(RunOutcome.BLOCKED)

    def _finish(self, outcome: RunOutcome) -> None:
        self.outcome = outcome
        self.finished_at = _now()

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def summary(self) -> Dict[str, Any]:
        """Durable, human-inspectable result of the run."""
        data: Dict[str, Any] = {
            "run_id": self.run_id,
            "outcome": self.outcome.value if self.outcome else None,
            "stage": self.stage.value,
            "commit": self.commit,
            "source_branch": self.source_branch,
            "target_branch": self.target_branch,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [
                {"name": s.name, "exit_code": s.exit_code, "duration_seconds": s.duration_seconds}
                for s in (self.validation.steps if self.validation else [])
            ],
        }
        if self.promotion is not None:
            data["merged_ref"] = self.promotion.merged_ref
            data["changed_paths"] = list(self.promotion.changed_paths)
            data["summary"] = self.promotion.summary
        if self.failure is not None:
            data["category"] = self.failure.category.value
            data["failing_step"] = self.failure.failing_step
            data["exit_code"] = self.failure.exit_code
            data["output_excerpt"] = self.failure.output_excerpt
            data["summary"] = self.failure.message
            data["notification_delivered"] = self.notification_delivered
        return data
