"""
Pipeline Config
===============
Reads the branch pair, feedback channel and ordered validation steps from a
YAML file.

Format:
    source_branch: new
    target_branch: main
    channel: "#ci-feedback"
    steps:
      - name: install
        command: npm ci
      - name: build
        command: npm run build
        timeout: 600
      - name: test
        command: npm test
        working_directory: website

Alternatively, `workflow:` may point at a GitHub Actions workflow file; its
`run:` steps are replayed in order as the validation steps. This lets the
pipeline reuse the CI definition the developers already maintain.

Fallback:
    Missing file → DEFAULT_STEPS with branches from the environment.

Deterministic:
    Same file → same PipelineConfig, always. Step order is preserved.
"""
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from mergegate.core.config import NOTIFY_CHANNEL, SOURCE_BRANCH, TARGET_BRANCH
from mergegate.core.constants import STEP_BUILD, STEP_INSTALL, STEP_TEST
from mergegate.core.errors import PipelineConfigError
from mergegate.models.push_event import BranchPair

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ValidationStep:
    """
    One discrete check, run in a fixed order.

    Fields
    ------
    name : str
        Label used in step results and failure reports ("install", "build", ...).
    command : str
        Shell command executed in the working clone.
    timeout_seconds : int | None
        Per-step override; None means the runner default.
    working_directory : str
        Sub-directory of the working clone to run in ("" = clone root).
    """
    name: str
    command: str
    timeout_seconds: Optional[int] = None
    working_directory: str = ""


@dataclass(frozen=True)
class PipelineConfig:
    source_branch: str = SOURCE_BRANCH
    target_branch: str = TARGET_BRANCH
    channel: str = NOTIFY_CHANNEL
    steps: tuple[ValidationStep, ...] = field(default_factory=tuple)

    @property
    def branch_pair(self) -> BranchPair:
        return BranchPair(self.source_branch, self.target_branch)


# Conventional static-site toolchain commands
DEFAULT_STEPS: tuple[ValidationStep, ...] = (
    ValidationStep(name=STEP_INSTALL, command="npm ci"),
    ValidationStep(name=STEP_BUILD, command="npm run build"),
    ValidationStep(name=STEP_TEST, command="npm test"),
)


# ---------------------------------------------------------------------------
# Step Parsing
# ---------------------------------------------------------------------------
def _parse_step(index: int, raw: Any) -> ValidationStep:
    if not isinstance(raw, dict):
        raise PipelineConfigError(f"Step #{index + 1} must be a mapping, got {type(raw).__name__}")

    name = str(raw.get("name", "")).strip()
    command = str(raw.get("command", raw.get("run", "")) or "").strip()
    if not name:
        raise PipelineConfigError(f"Step #{index + 1} has no name")
    if not command:
        raise PipelineConfigError(f"Step '{name}' has no command")

    timeout = raw.get("timeout")
    if timeout is not None:
        try:
            timeout = int(timeout)
        except (TypeError, ValueError):
            raise PipelineConfigError(f"Step '{name}' has non-integer timeout: {timeout!r}")
        if timeout <= 0:
            raise PipelineConfigError(f"Step '{name}' timeout must be positive")

    return ValidationStep(
        name=name,
        command=command,
        timeout_seconds=timeout,
        working_directory=str(raw.get("working_directory", "") or ""),
    )


def parse_steps(raw_steps: Any) -> tuple[ValidationStep, ...]:
    """Validate and convert a YAML `steps:` list, preserving order."""
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PipelineConfigError("`steps` must be a non-empty list")

    steps = tuple(_parse_step(i, raw) for i, raw in enumerate(raw_steps))

    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            raise PipelineConfigError(f"Duplicate step name: {step.name}")
        seen.add(step.name)
    return steps


# ---------------------------------------------------------------------------
# GitHub Actions Workflow Replay
# ---------------------------------------------------------------------------
def steps_from_workflow(workflow_path: str, job: Optional[str] = None) -> tuple[ValidationStep, ...]:
    """
    Extract ordered `run:` steps from a GitHub Actions workflow.

    Action-only steps (`uses:`) are skipped. When `job` is None the first job
    with at least one run step is used. Unnamed steps become "step-N".
    Step names are de-duplicated with a numeric suffix.
    """
    try:
        with open(workflow_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PipelineConfigError(f"Cannot read workflow {workflow_path}: {e}")
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML in workflow {workflow_path}: {e}")

    jobs = data.get("jobs") if isinstance(data, dict) else None
    if not isinstance(jobs, dict):
        raise PipelineConfigError(f"Workflow {workflow_path} defines no jobs")

    candidates = [(job, jobs.get(job))] if job else list(jobs.items())

    for job_name, job_def in candidates:
        if not isinstance(job_def, dict):
            continue

        job_workdir = ""
        defaults = job_def.get("defaults")
        if isinstance(defaults, dict) and isinstance(defaults.get("run"), dict):
            job_workdir = defaults["run"].get("working-directory", "")

        steps: list[ValidationStep] = []
        used_names: set[str] = set()
        for i, step_def in enumerate(job_def.get("steps") or []):
            if not isinstance(step_def, dict) or not step_def.get("run"):
                continue
            name = str(step_def.get("name") or f"step-{i}")
            base, n = name, 2
            while name in used_names:
                name = f"{base}-{n}"
                n += 1
            used_names.add(name)

            timeout_seconds = None
            timeout_minutes = step_def.get("timeout-minutes")
            if timeout_minutes:
                try:
                    timeout_seconds = int(timeout_minutes) * 60
                except (TypeError, ValueError):
                    raise PipelineConfigError(
                        f"Workflow step '{name}' has non-integer timeout-minutes: {timeout_minutes!r}"
                    )

            steps.append(ValidationStep(
                name=name,
                command=str(step_def["run"]).strip(),
                timeout_seconds=timeout_seconds,
                working_directory=step_def.get("working-directory", job_workdir),
            ))

        if steps:
            logger.info("Replaying %d run step(s) from job '%s' in %s", len(steps), job_name, workflow_path)
            return tuple(steps)

    raise PipelineConfigError(f"Workflow {workflow_path} has no `run:` steps")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_pipeline_config(path: str) -> PipelineConfig:
    """
    Load a PipelineConfig from YAML.

    Raises
    ------
    PipelineConfigError
        If the file exists but is malformed.
    """
    if not os.path.isfile(path):
        logger.info("No pipeline config at %s, using default steps", path)
        return PipelineConfig(steps=DEFAULT_STEPS)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise PipelineConfigError(f"{path} must contain a mapping at the top level")

    if "workflow" in data:
        workflow = os.path.join(os.path.dirname(os.path.abspath(path)), str(data["workflow"]))
        steps = steps_from_workflow(workflow, data.get("job"))
    elif "steps" in data:
        steps = parse_steps(data["steps"])
    else:
        steps = DEFAULT_STEPS

    config = PipelineConfig(
        source_branch=str(data.get("source_branch") or SOURCE_BRANCH),
        target_branch=str(data.get("target_branch") or TARGET_BRANCH),
        channel=str(data.get("channel") or NOTIFY_CHANNEL),
        steps=steps,
    )
    if config.source_branch == config.target_branch:
        raise PipelineConfigError("source_branch and target_branch must differ")

    logger.info(
        "Pipeline config loaded: %s with steps [%s]",
        config.branch_pair, ", ".join(s.name for s in config.steps),
    )
    return config
