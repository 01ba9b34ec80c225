"""
Terminal Report Models
======================
Exactly one of these is attached to every finished PipelineRun.

PromotionRecord — the validated commit reached the target branch
FailureReport   — promotion was blocked; category says why

FailureCategory keeps infrastructure problems apart from code-quality
failures so a rejected push is never read as a failing test.
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class FailureCategory(str, Enum):
    VALIDATION_FAILURE = "validation_failure"
    PROMOTION_CONFLICT = "promotion_conflict"
    INTERNAL_ERROR = "internal_error"


class PromotionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    commit: str
    target_branch: str
    previous_target_ref: str = ""
    merged_ref: str
    fast_forward: bool = False
    changed_paths: List[str] = []
    attempts: int = 1
    summary: str = ""


class FailureReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: FailureCategory
    commit: str
    source_branch: str
    target_branch: str
    failing_step: Optional[str] = None
    exit_code: Optional[int] = None
    output_excerpt: str = ""
    message: str = ""
