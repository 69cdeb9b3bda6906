"""Tests for the process executor's retry policy and helpers."""

from __future__ import annotations

import errno
import sys

import pytest

from concord.config.schema import AgentConfig, ConcordConfig, ExecutionConfig, RetryConfig
from concord.errors import WorkerExecutionError, WorkerTimeoutError
from concord.executor import (
    TRUNCATION_MARKER,
    ProcessExecutor,
    backoff_with_jitter,
    clean_env,
    is_retryable,
    truncate_output,
)
from concord.models import WorkerResult, WorkerTask


def make_config(max_retries: int = 2, binary: str = "fake") -> ConcordConfig:
    return ConcordConfig(
        agents={"w": AgentConfig(name="w", binary=binary, timeout_seconds=1.0)},
        execution=ExecutionConfig(retry=RetryConfig(max_retries=max_retries, base_delay_seconds=2.0)),
    )


class FlakyExecutor(ProcessExecutor):
    """Fails the first ``failures`` attempts with ``error``."""

    def __init__(self, config: ConcordConfig, error: Exception, failures: int) -> None:
        self.sleeps: list[float] = []

        async def record(delay: float) -> None:
            self.sleeps.append(delay)

        super().__init__(config, sleep=record, rng=lambda: 0.5)
        self.error = error
        self.failures = failures
        self.attempts = 0

    async def run_once(self, task: WorkerTask) -> WorkerResult:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return WorkerResult(worker_id=task.worker_id, raw_text="ok", exit_status=0, duration_s=0.0)


class TestHelpers:
    def test_truncate(self) -> None:
        assert truncate_output("abcdef", 3) == "abc" + TRUNCATION_MARKER
        assert truncate_output("abc", 3) == "abc"
        assert truncate_output("abcdef", 0) == "abcdef"

    def test_clean_env(self) -> None:
        env = clean_env({"PATH": "/bin", "CLAUDECODE": "1", "CLAUDE_CODE_ENTRYPOINT": "cli"})
        assert env == {"PATH": "/bin"}

    def test_is_retryable(self) -> None:
        assert is_retryable(WorkerTimeoutError("w", 1.0))
        assert not is_retryable(WorkerExecutionError("x", worker_id="w"))
        assert not is_retryable(FileNotFoundError("missing"))
        assert not is_retryable(PermissionError("denied"))
        assert is_retryable(ConnectionResetError())
        assert is_retryable(BrokenPipeError())
        assert is_retryable(OSError(errno.ECONNRESET, "reset"))
        assert not is_retryable(OSError(errno.ENOEXEC, "exec format"))
        assert not is_retryable(ValueError("nope"))


class TestBackoff:
    def test_exponential_without_jitter(self) -> None:
        wait = backoff_with_jitter(RetryConfig(base_delay_seconds=2.0, max_delay_seconds=15.0), rng=lambda: 0.5)
        assert [wait.delay_for(n) for n in range(4)] == [2.0, 4.0, 8.0, 15.0]

    def test_jitter_bounds(self) -> None:
        retry = RetryConfig(base_delay_seconds=2.0, max_delay_seconds=100.0, jitter_ratio=0.2)
        low = backoff_with_jitter(retry, rng=lambda: 0.0).delay_for(1)
        high = backoff_with_jitter(retry, rng=lambda: 0.999999).delay_for(1)
        assert low == pytest.approx(3.2)
        assert high == pytest.approx(4.8, rel=1e-5)


class TestRetryBound:
    @pytest.mark.asyncio
    async def test_timeouts_retry_until_exhausted(self) -> None:
        executor = FlakyExecutor(make_config(max_retries=2), WorkerTimeoutError("w", 1.0), failures=10)
        with pytest.raises(WorkerTimeoutError):
            await executor.execute(executor.task_for("w", "prompt"))
        assert executor.attempts == 3
        assert executor.sleeps == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self) -> None:
        executor = FlakyExecutor(make_config(max_retries=0), WorkerTimeoutError("w", 1.0), failures=10)
        with pytest.raises(WorkerTimeoutError):
            await executor.execute(executor.task_for("w", "prompt"))
        assert executor.attempts == 1
        assert executor.sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self) -> None:
        executor = FlakyExecutor(make_config(max_retries=2), WorkerTimeoutError("w", 1.0), failures=1)
        result = await executor.execute(executor.task_for("w", "prompt"))
        assert result.raw_text == "ok"
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_fatal_errors_not_retried(self) -> None:
        error = WorkerExecutionError("binary not found", worker_id="w")
        executor = FlakyExecutor(make_config(max_retries=3), error, failures=10)
        with pytest.raises(WorkerExecutionError):
            await executor.execute(executor.task_for("w", "prompt"))
        assert executor.attempts == 1

    @pytest.mark.asyncio
    async def test_try_execute_folds_failure(self) -> None:
        executor = FlakyExecutor(make_config(max_retries=1), WorkerTimeoutError("w", 1.0), failures=10)
        result = await executor.try_execute(executor.task_for("w", "prompt"))
        assert result.failed
        assert "timed out" in result.error
        assert executor.attempts == 2


class TestSpawn:
    @pytest.mark.asyncio
    async def test_missing_binary_is_fatal(self) -> None:
        executor = ProcessExecutor(make_config(max_retries=3, binary="/nonexistent/concord-worker"))
        with pytest.raises(WorkerExecutionError) as excinfo:
            await executor.execute(executor.task_for("w", "prompt"))
        assert not excinfo.value.retryable
        assert executor.spawn_count == 1

    @pytest.mark.asyncio
    async def test_prompt_is_last_argument(self) -> None:
        config = ConcordConfig(agents={
            "echo": AgentConfig(
                name="echo",
                binary=sys.executable,
                args=("-c", "import sys; print(sys.argv[-1])"),
                timeout_seconds=30.0,
            ),
        })
        executor = ProcessExecutor(config)
        result = await executor.execute(executor.task_for("echo", "review this"))
        assert result.raw_text.strip() == "review this"
        assert result.exit_status == 0
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_context_prefixes_prompt(self) -> None:
        config = ConcordConfig(agents={
            "echo": AgentConfig(
                name="echo",
                binary=sys.executable,
                args=("-c", "import sys; sys.stdout.write(sys.argv[-1])"),
                timeout_seconds=30.0,
            ),
        })
        executor = ProcessExecutor(config)
        result = await executor.execute(executor.task_for("echo", "Q?", context="some diff"))
        assert result.raw_text == "Context:\nsome diff\n\nQuestion:\nQ?"

    @pytest.mark.asyncio
    async def test_stderr_used_when_stdout_empty(self) -> None:
        config = ConcordConfig(
            agents={"err": AgentConfig(
                name="err",
                binary=sys.executable,
                args=("-c", "import sys; sys.stderr.write('x' * 50); sys.exit(3)"),
                timeout_seconds=30.0,
            )},
            execution=ExecutionConfig(max_output_length=10),
        )
        executor = ProcessExecutor(config)
        result = await executor.execute(executor.task_for("err", "p"))
        assert result.raw_text == "x" * 10 + TRUNCATION_MARKER
        assert result.exit_status == 3
