"""
Test doubles for the pipeline capabilities.
No git, Docker, network or real build tooling involved.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

from mergegate.agents.git_agent import MergeOutcome
from mergegate.core.errors import GitCommandError
from mergegate.executor.step_runner import StepExecution
from mergegate.parser.pipeline_config import PipelineConfig, ValidationStep


def make_steps(*names: str) -> Tuple[ValidationStep, ...]:
    return tuple(ValidationStep(name=n, command=f"run-{n}") for n in names)


def make_config(steps: Sequence[str] = ("install", "build", "test"),
                source: str = "new", target: str = "main") -> PipelineConfig:
    return PipelineConfig(
        source_branch=source, target_branch=target,
        channel="#ci-feedback", steps=make_steps(*steps),
    )


class FakeRunner:
    """
    Returns scripted exit codes per step name (default 0).
    With `block` set, the first call waits on it after setting `started`.
    """

    def __init__(self, exit_codes: Optional[Dict[str, int]] = None,
                 outputs: Optional[Dict[str, str]] = None,
                 block: Optional[asyncio.Event] = None,
                 started: Optional[asyncio.Event] = None) -> None:
        self.exit_codes = exit_codes or {}
        self.outputs = outputs or {}
        self.block = block
        self.started = started
        self.calls: List[str] = []

    async def run(self, step: ValidationStep, workdir: str) -> StepExecution:
        self.calls.append(step.name)
        if self.block is not None:
            block, self.block = self.block, None
            if self.started is not None:
                self.started.set()
            await block.wait()
        code = self.exit_codes.get(step.name, 0)
        return StepExecution(
            exit_code=code,
            output=self.outputs.get(step.name, f"{step.name} output"),
            duration_seconds=0.01,
        )


class FakeVCS:
    """
    In-memory remote. Fast-forwards by default; `push_results` scripts
    successive push answers (True = accepted).
    """

    def __init__(self, branches: Optional[Dict[str, str]] = None,
                 push_results: Optional[List[bool]] = None,
                 fast_forward: bool = True,
                 conflicts: int = 0,
                 failing_checkouts: Sequence[str] = ()) -> None:
        self.branches = dict(branches or {"main": "base000", "new": "base000"})
        self.push_results = list(push_results or [])
        self.fast_forward = fast_forward
        self.conflicts = conflicts
        self.failing_checkouts = set(failing_checkouts)
        self.fetches: List[str] = []
        self.checkouts: List[str] = []
        self.merges: List[Tuple[str, str]] = []
        self.pushes: List[Tuple[str, str]] = []

    def fetch(self, branch: str) -> str:
        self.fetches.append(branch)
        return self.branches[branch]

    def checkout(self, commit: str) -> None:
        self.checkouts.append(commit)
        if commit in self.failing_checkouts:
            raise GitCommandError(["git", "checkout", commit], "fatal: reference is not a tree")

    def merge(self, target_ref: str, commit: str, message: str = "") -> MergeOutcome:
        self.merges.append((target_ref, commit))
        if self.conflicts > 0:
            self.conflicts -= 1
            return MergeOutcome(conflict=True, detail="CONFLICT (content): docs/intro.md")
        if self.fast_forward:
            return MergeOutcome(ref=commit, fast_forward=True)
        return MergeOutcome(ref=f"merge-{commit}")

    def push(self, branch: str, ref: str) -> bool:
        self.pushes.append((branch, ref))
        accepted = self.push_results.pop(0) if self.push_results else True
        if accepted:
            self.branches[branch] = ref
        return accepted

    def changed_paths(self, old_ref: str, new_ref: str) -> List[str]:
        return ["docs/intro.md", "sidebars.js"]


class FakeNotifier:

    def __init__(self, delivered: bool = True, error: Optional[Exception] = None) -> None:
        self.delivered = delivered
        self.error = error
        self.posts: List[Tuple[str, str]] = []

    async def post(self, channel: str, message: str) -> bool:
        self.posts.append((channel, message))
        if self.error is not None:
            raise self.error
        return self.delivered
