"""
Unit Tests — Step Runners
=========================
Log excerpting, the subprocess runner against real shell commands, and the
Docker runner with a mocked Docker client (no daemon required).
"""
import asyncio
import sys
import pytest
from unittest.mock import MagicMock, patch

from docker.errors import ImageNotFound

from mergegate.executor.step_runner import (
    DockerStepRunner,
    SubprocessStepRunner,
    build_step_runner,
    create_log_excerpt,
)
from mergegate.parser.pipeline_config import ValidationStep

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


# ---------------------------------------------------------------------------
# 1. Log excerpt
# ---------------------------------------------------------------------------
class TestLogExcerpt:

    def test_short_log_unchanged(self):
        assert create_log_excerpt("a\nb\nc", tail=5) == "a\nb\nc"

    def test_keeps_last_lines(self):
        log = "\n".join(f"line {i}" for i in range(100))
        excerpt = create_log_excerpt(log, tail=3, max_chars=10_000)
        assert excerpt.splitlines() == [
            "... (97 lines omitted) ...", "line 97", "line 98", "line 99",
        ]

    def test_char_ceiling(self):
        log = "\n".join("x" * 50 for _ in range(10))
        excerpt = create_log_excerpt(log, tail=10, max_chars=120)
        assert len(excerpt) <= 120
        # Only whole lines survive the character cut
        assert all(line == "x" * 50 for line in excerpt.splitlines())

    def test_empty(self):
        assert create_log_excerpt("") == ""


# ---------------------------------------------------------------------------
# 2. Subprocess runner
# ---------------------------------------------------------------------------
@posix_only
class TestSubprocessRunner:

    def test_success_captures_output(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        step = ValidationStep(name="build", command="echo building && echo warn 1>&2")
        result = asyncio.run(runner.run(step, str(tmp_path)))
        assert result.exit_code == 0
        assert "building" in result.output
        assert "warn" in result.output
        assert result.timed_out is False
        assert result.duration_seconds >= 0

    def test_nonzero_exit(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        result = asyncio.run(runner.run(ValidationStep(name="test", command="exit 3"), str(tmp_path)))
        assert result.exit_code == 3

    def test_runs_in_working_directory(self, tmp_path):
        (tmp_path / "site").mkdir()
        (tmp_path / "site" / "marker.txt").write_text("here")
        runner = SubprocessStepRunner(default_timeout=30)
        step = ValidationStep(name="ls", command="cat marker.txt", working_directory="site")
        result = asyncio.run(runner.run(step, str(tmp_path)))
        assert result.output.strip() == "here"

    def test_ci_env_set(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        result = asyncio.run(runner.run(ValidationStep(name="env", command="echo $CI"), str(tmp_path)))
        assert result.output.strip() == "true"

    def test_timeout_kills_step(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        step = ValidationStep(name="slow", command="exec sleep 10", timeout_seconds=1)
        result = asyncio.run(runner.run(step, str(tmp_path)))
        assert result.timed_out is True
        assert result.exit_code == 124
        assert result.duration_seconds < 10

    def test_timeout_kills_child_processes(self, tmp_path):
        # The shell forks `sleep`; killing only the shell would leave the pipe open
        runner = SubprocessStepRunner(default_timeout=30)
        step = ValidationStep(name="hang", command="sleep 15; echo done", timeout_seconds=1)
        result = asyncio.run(runner.run(step, str(tmp_path)))
        assert result.timed_out is True
        assert result.exit_code == 124
        assert result.duration_seconds < 5
        assert "done" not in result.output

    def test_timeout_keeps_partial_output(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        step = ValidationStep(
            name="test", command="echo 'FAIL: test_sidebar hangs'; sleep 10", timeout_seconds=1
        )
        result = asyncio.run(runner.run(step, str(tmp_path)))
        assert result.timed_out is True
        lines = result.output.splitlines()
        assert lines[0] == "FAIL: test_sidebar hangs"
        assert lines[-1] == "Step 'test' killed after 1s"

    def test_missing_workdir_is_infrastructure_error(self, tmp_path):
        runner = SubprocessStepRunner(default_timeout=30)
        result = asyncio.run(runner.run(ValidationStep(name="x", command="true"), str(tmp_path / "gone")))
        assert result.exit_code == -1
        assert result.error is not None


# ---------------------------------------------------------------------------
# 3. Docker runner (mocked)
# ---------------------------------------------------------------------------
class TestDockerRunner:

    def _client(self, container):
        client = MagicMock()
        client.containers.run.return_value = container
        return client

    def test_success(self, tmp_path):
        container = MagicMock()
        container.wait.return_value = {"StatusCode": 0}
        container.logs.return_value = b"built ok"
        client = self._client(container)

        with patch("mergegate.executor.step_runner.docker.from_env", return_value=client):
            runner = DockerStepRunner(image="node:20-slim", default_timeout=60)
            result = asyncio.run(runner.run(
                ValidationStep(name="build", command="npm run build", working_directory="site"),
                str(tmp_path),
            ))

        assert result.exit_code == 0
        assert result.output == "built ok"
        kwargs = client.containers.run.call_args.kwargs
        assert kwargs["image"] == "node:20-slim"
        assert kwargs["command"] == ["sh", "-c", "npm run build"]
        assert kwargs["working_dir"] == "/workspace/site"
        container.remove.assert_called_once_with(force=True)

    def test_timeout_kills_container(self, tmp_path):
        container = MagicMock()
        container.wait.side_effect = Exception("Read timed out")
        container.status = "running"
        container.logs.return_value = b"partial"
        client = self._client(container)

        with patch("mergegate.executor.step_runner.docker.from_env", return_value=client):
            result = asyncio.run(DockerStepRunner().run(
                ValidationStep(name="test", command="npm test", timeout_seconds=1), str(tmp_path)
            ))

        assert result.timed_out is True
        assert result.exit_code == 124
        container.kill.assert_called_once()
        container.remove.assert_called_once_with(force=True)

    def test_missing_image(self, tmp_path):
        client = MagicMock()
        client.containers.run.side_effect = ImageNotFound("nope")

        with patch("mergegate.executor.step_runner.docker.from_env", return_value=client):
            result = asyncio.run(DockerStepRunner(image="ghost:1").run(
                ValidationStep(name="build", command="true"), str(tmp_path)
            ))

        assert result.exit_code == -1
        assert "ghost:1" in result.error

    def test_daemon_unavailable(self, tmp_path):
        with patch("mergegate.executor.step_runner.docker.from_env", side_effect=RuntimeError("no socket")):
            result = asyncio.run(DockerStepRunner().run(
                ValidationStep(name="build", command="true"), str(tmp_path)
            ))
        assert result.exit_code == -1
        assert "no socket" in result.error


def test_runner_factory():
    assert isinstance(build_step_runner("subprocess"), SubprocessStepRunner)
    assert isinstance(build_step_runner("docker"), DockerStepRunner)
    with pytest.raises(ValueError):
        build_step_runner("kubernetes")
