"""
Step Runner
===========
Executes a single validation step and reports what happened.
Returns structured execution results (output, exit code, timing).

BOUNDARY RULES:
    - Runner ONLY observes execution.
    - Runner NEVER decides whether validation passed — that is the Validation Stage's job.
    - Runner NEVER touches version control.
    - Runner NEVER raises for a failing or hanging command: every call returns a StepExecution.

RUNNERS:
    SubprocessStepRunner — shell command in the working clone (default).
    DockerStepRunner     — same command inside an ephemeral sandbox container,
                           working clone mounted at /workspace.

TIMEOUTS:
    A step that exceeds its timeout is killed together with every process it
    started, and reported with exit_code=124 and timed_out=True plus the
    output captured so far. The Validation Stage treats it like any other
    non-zero exit.
"""
import os
import time
import signal
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import docker
from docker.errors import APIError, ImageNotFound

from mergegate.core.config import (
    DOCKER_IMAGE,
    OUTPUT_EXCERPT_LINES,
    OUTPUT_EXCERPT_MAX_CHARS,
    STEP_RUNNER,
    STEP_TIMEOUT_SECONDS,
)
from mergegate.core.constants import EXIT_INFRASTRUCTURE, EXIT_TIMEOUT
from mergegate.parser.pipeline_config import ValidationStep

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution Result (returned to the Validation Stage)
# ---------------------------------------------------------------------------
@dataclass
class StepExecution:
    """
    Raw outcome of running one step.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success). 124 on timeout, -1 when the
        command could not be started at all.
    output : str
        Combined stdout + stderr.
    duration_seconds : float
        Wall clock duration.
    timed_out : bool
        True when the step was killed for exceeding its timeout.
    error : str | None
        Infrastructure error message (not build errors).
    """
    exit_code: int = EXIT_INFRASTRUCTURE
    output: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    error: Optional[str] = None


class StepRunner(Protocol):
    async def run(self, step: ValidationStep, workdir: str) -> StepExecution:
        ...


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
def create_log_excerpt(output: str,
                       tail: int = OUTPUT_EXCERPT_LINES,
                       max_chars: int = OUTPUT_EXCERPT_MAX_CHARS) -> str:
    """
    Keep the last `tail` lines of `output`, capped at `max_chars`.

    Failures are reported at the end of build/test output, so the tail is
    what matters. A marker line notes how many lines were dropped.
    """
    lines = output.splitlines()
    omitted = max(0, len(lines) - tail)
    kept = lines[-tail:] if tail > 0 else []

    excerpt = "\n".join(kept)
    if len(excerpt) > max_chars:
        excerpt = excerpt[-max_chars:]
        # Drop the partial first line left by the character cut
        newline = excerpt.find("\n")
        if newline != -1:
            excerpt = excerpt[newline + 1:]

    if omitted:
        excerpt = f"... ({omitted} lines omitted) ...\n{excerpt}"
    return excerpt


def _resolve_workdir(workdir: str, step: ValidationStep) -> str:
    if step.working_directory:
        return os.path.join(workdir, step.working_directory.strip("/"))
    return workdir


# ---------------------------------------------------------------------------
# Subprocess Runner
# ---------------------------------------------------------------------------
# Output still arriving after the process group is killed is read for at most this long
_DRAIN_SECONDS = 5


async def _collect(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        chunks.append(chunk)


async def _wait_for_exit(proc: asyncio.subprocess.Process, reader: asyncio.Task) -> None:
    # EOF on the pipe means every process holding it has exited; the reader
    # survives cancellation so partial output is kept on timeout
    await asyncio.shield(reader)
    await proc.wait()


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Kill the shell and every child it started (npm → node, sleep, ...)."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


class SubprocessStepRunner:
    """
    Runs each step as a shell command in the working clone.

    Each step gets its own session so a timeout can kill the whole process
    tree; output is buffered as it arrives and kept on timeout.
    """

    def __init__(self, default_timeout: int = STEP_TIMEOUT_SECONDS) -> None:
        self.default_timeout = default_timeout

    async def run(self, step: ValidationStep, workdir: str) -> StepExecution:
        result = StepExecution()
        timeout = step.timeout_seconds or self.default_timeout
        cwd = _resolve_workdir(workdir, step)
        start_time = time.monotonic()

        logger.info("Running step '%s' | cwd=%s | timeout=%ds", step.name, cwd, timeout)

        try:
            proc = await asyncio.create_subprocess_shell(
                step.command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, "CI": "true"},
                start_new_session=True,
            )
        except OSError as e:
            result.error = f"Could not start step '{step.name}': {e}"
            logger.error(result.error)
            result.duration_seconds = round(time.monotonic() - start_time, 3)
            return result

        chunks: list[bytes] = []
        reader = asyncio.create_task(_collect(proc.stdout, chunks))

        try:
            await asyncio.wait_for(_wait_for_exit(proc, reader), timeout=timeout)
            result.exit_code = proc.returncode if proc.returncode is not None else EXIT_INFRASTRUCTURE
        except asyncio.TimeoutError:
            _kill_process_group(proc)
            try:
                await asyncio.wait_for(reader, timeout=_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Step '%s' output still open after kill, dropping the rest", step.name)
            try:
                await asyncio.wait_for(proc.wait(), timeout=_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Step '%s' shell did not report its exit after kill", step.name)
            result.exit_code = EXIT_TIMEOUT
            result.timed_out = True

        result.output = b"".join(chunks).decode("utf-8", errors="replace")
        if result.timed_out:
            notice = f"Step '{step.name}' killed after {timeout}s"
            result.output = f"{result.output.rstrip()}\n{notice}" if result.output.strip() else notice
            logger.warning(notice)

        result.duration_seconds = round(time.monotonic() - start_time, 3)
        logger.info(
            "Step '%s' finished | exit=%d | time=%.2fs",
            step.name, result.exit_code, result.duration_seconds,
        )
        return result


# ---------------------------------------------------------------------------
# Docker Runner
# ---------------------------------------------------------------------------
# Docker resource limits
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


class DockerStepRunner:
    """
    Runs each step inside an ephemeral container.

    One container per step; the working clone is mounted read-write at
    /workspace and the container is always removed afterwards.
    """

    def __init__(self, image: str = DOCKER_IMAGE, default_timeout: int = STEP_TIMEOUT_SECONDS) -> None:
        self.image = image
        self.default_timeout = default_timeout

    async def run(self, step: ValidationStep, workdir: str) -> StepExecution:
        return await asyncio.to_thread(self._run_sync, step, workdir)

    def _run_sync(self, step: ValidationStep, workdir: str) -> StepExecution:
        result = StepExecution()
        timeout = step.timeout_seconds or self.default_timeout
        container_workdir = "/workspace"
        if step.working_directory:
            container_workdir = f"/workspace/{step.working_directory.strip('/')}"
        start_time = time.monotonic()
        container = None

        try:
            client = docker.from_env()
            logger.info(
                "Starting container | image=%s | step=%s | timeout=%ds",
                self.image, step.name, timeout,
            )
            container = client.containers.run(
                image=self.image,
                command=["sh", "-c", step.command],
                volumes={os.path.abspath(workdir): {"bind": "/workspace", "mode": "rw"}},
                environment={"CI": "true"},
                working_dir=container_workdir,
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                labels={"project": "mergegate", "role": "validation", "step": step.name},
                detach=True,
            )

            try:
                wait_result = container.wait(timeout=timeout)
                result.exit_code = wait_result.get("StatusCode", EXIT_INFRASTRUCTURE)
            except Exception:
                # wait() raises a client-side read timeout; confirm the container is still running
                container.reload()
                if container.status != "running":
                    raise
                container.kill()
                result.exit_code = EXIT_TIMEOUT
                result.timed_out = True
                logger.warning("Step '%s' killed after %ds", step.name, timeout)

            log_bytes = container.logs(stdout=True, stderr=True)
            result.output = log_bytes.decode("utf-8", errors="replace")

        except ImageNotFound:
            result.error = f"Docker image '{self.image}' not found"
            logger.error(result.error)

        except APIError as e:
            result.error = f"Docker API error: {e}"
            logger.error(result.error)

        except Exception as e:
            # Catch-all: the Validation Stage must always receive a result
            result.error = f"Unexpected runner error: {type(e).__name__}: {e}"
            logger.exception(result.error)

        finally:
            if container is not None:
                try:
                    container.remove(force=True)
                except Exception:
                    logger.warning("Failed to remove container", exc_info=True)

        result.duration_seconds = round(time.monotonic() - start_time, 3)
        logger.info(
            "Step '%s' finished in container | exit=%d | time=%.2fs",
            step.name, result.exit_code, result.duration_seconds,
        )
        return result


def build_step_runner(kind: str = STEP_RUNNER) -> StepRunner:
    """Runner factory keyed by the STEP_RUNNER setting."""
    if kind == "docker":
        return DockerStepRunner()
    if kind == "subprocess":
        return SubprocessStepRunner()
    raise ValueError(f"Unknown step runner: {kind!r} (expected 'subprocess' or 'docker')")
