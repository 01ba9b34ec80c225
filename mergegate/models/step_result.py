"""
Step Result Models
==================
Pydantic models for the Validation Stage output.

StepResult       — one executed validation step (immutable)
ValidationResult — ordered step results + overall success flag (immutable)

Stop-on-first-failure means a failed ValidationResult always ends with its
single failing step; steps after it are absent, not skipped entries.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    exit_code: int
    output_excerpt: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: List[StepResult] = []
    success: bool = False

    @property
    def failing_step(self) -> Optional[StepResult]:
        """First step that did not pass, or None when validation succeeded."""
        for step in self.steps:
            if not step.passed:
                return step
        return None

    @property
    def duration_seconds(self) -> float:
        return round(sum(s.duration_seconds for s in self.steps), 3)
