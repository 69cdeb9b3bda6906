"""Process executor: one external worker invocation with retry and escalation.

``ProcessExecutor.execute`` runs a worker CLI with the rendered prompt as
its final argument, enforces the timeout itself, and retries timeouts and
transient OS errors with jittered exponential backoff (tenacity).  On
timeout the child goes through a two-stage shutdown: SIGTERM, then SIGKILL
once the grace period expires.  The stages are recorded on a
``TerminationToken`` so they can be inspected.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from concord.config.schema import ConcordConfig, RetryConfig
from concord.errors import DebateError, WorkerExecutionError, WorkerTimeoutError
from concord.models import WorkerResult, WorkerTask

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n... (output truncated)"

# Variables that make nested agent CLIs refuse to start.
STRIP_ENV_VARS = frozenset({
    "CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT", "CLAUDE_REPL",
    "CLAUDE_CODE_PACKAGE_DIR",
})

_TRANSIENT_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.ETIMEDOUT,
    errno.EPIPE,
})

SleepFn = Callable[[float], Awaitable[Any]]


def clean_env(base: Mapping[str, str] | None = None) -> dict[str, str]:
    source = os.environ if base is None else base
    return {k: v for k, v in source.items() if k not in STRIP_ENV_VARS}


def truncate_output(text: str, limit: int) -> str:
    if limit > 0 and len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def is_retryable(exc: BaseException) -> bool:
    """Timeouts and transient OS errors retry; everything else is fatal."""
    if isinstance(exc, DebateError):
        return exc.retryable
    if isinstance(exc, (FileNotFoundError, PermissionError)):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, OSError):
        return exc.errno in _TRANSIENT_ERRNOS
    return False


class backoff_with_jitter(wait_base):  # noqa: N801 - tenacity naming
    """Exponential backoff from ``base``, capped at ``max``, with +/- jitter."""

    def __init__(
        self,
        retry: RetryConfig,
        *,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.base = retry.base_delay_seconds
        self.max = retry.max_delay_seconds
        self.jitter_ratio = retry.jitter_ratio
        self.rng = rng

    def delay_for(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (0-based)."""
        delay = self.base * (2 ** attempt)
        jitter = delay * self.jitter_ratio * (2 * self.rng() - 1)
        return max(0.0, min(delay + jitter, self.max))

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number - 1)


class TerminationStage(StrEnum):
    RUNNING = "running"
    TERMINATING = "terminating"
    KILLED = "killed"
    EXITED = "exited"


@dataclass(slots=True)
class TerminationToken:
    """Two-stage shutdown of a child process.

    ``RUNNING -> TERMINATING -> EXITED`` when the child honours SIGTERM
    within the grace period, ``RUNNING -> TERMINATING -> KILLED``
    otherwise.  A child that already exited goes straight to ``EXITED``.
    """

    grace_seconds: float = 5.0
    stage: TerminationStage = TerminationStage.RUNNING
    history: list[TerminationStage] = field(default_factory=list)

    def _advance(self, stage: TerminationStage) -> None:
        self.stage = stage
        self.history.append(stage)

    async def shutdown(self, process: asyncio.subprocess.Process, *, label: str = "") -> TerminationStage:
        if process.returncode is not None:
            self._advance(TerminationStage.EXITED)
            return self.stage

        self._advance(TerminationStage.TERMINATING)
        logger.info("Sending SIGTERM to %s", label or process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            self._advance(TerminationStage.EXITED)
            return self.stage

        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_seconds)
        except TimeoutError:
            logger.warning("Escalating to SIGKILL for %s", label or process.pid)
            self._advance(TerminationStage.KILLED)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        else:
            self._advance(TerminationStage.EXITED)
        return self.stage


class ProcessExecutor:
    """Runs worker invocations described by ``WorkerTask``.

    At most ``retry.max_retries + 1`` processes are spawned per call.
    ``max_parallel`` bounds how many children run at once across every
    concurrent call sharing this executor.
    """

    def __init__(
        self,
        config: ConcordConfig,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config
        self._env = clean_env(env)
        self._cwd = cwd
        self._sleep = sleep
        self._rng = rng
        self._semaphore = asyncio.Semaphore(max(1, config.execution.max_parallel))
        self.spawn_count = 0

    def task_for(self, worker_id: str, prompt: str, *, context: str = "") -> WorkerTask:
        agent = self._config.agent(worker_id)
        return WorkerTask(
            worker_id=worker_id,
            prompt=prompt,
            timeout_seconds=agent.timeout_seconds,
            retry=self._config.retry_for(worker_id),
            context=context,
        )

    async def execute(self, task: WorkerTask) -> WorkerResult:
        """Run *task*, retrying per its policy; raises on final failure."""
        policy = task.retry
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(0, policy.max_retries) + 1),
            wait=backoff_with_jitter(policy, rng=self._rng),
            retry=retry_if_exception(is_retryable),
            reraise=True,
            sleep=self._sleep,
            before_sleep=self._log_retry(task),
        )
        async for attempt in retrying:
            with attempt:
                result = await self.run_once(task)
        return replace(result, attempts=attempt.retry_state.attempt_number)

    async def try_execute(self, task: WorkerTask) -> WorkerResult:
        """Like ``execute`` but folds failures into a failed ``WorkerResult``."""
        start = time.monotonic()
        try:
            return await self.execute(task)
        except DebateError as exc:
            logger.warning("Agent %s failed: %s", task.worker_id, exc)
            return WorkerResult(
                worker_id=task.worker_id,
                raw_text="",
                exit_status=None,
                duration_s=time.monotonic() - start,
                failed=True,
                error=str(exc),
            )

    async def run_once(self, task: WorkerTask) -> WorkerResult:
        """One attempt: spawn, wait with timeout, capture output."""
        agent = self._config.agent(task.worker_id)
        argv = [agent.binary, *agent.args, task.full_prompt()]
        async with self._semaphore:
            start = time.monotonic()
            process = await self._spawn(task.worker_id, argv)
            token = TerminationToken(grace_seconds=self._config.execution.kill_grace_seconds)
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=task.timeout_seconds
                )
            except TimeoutError:
                stage = await token.shutdown(process, label=task.worker_id)
                logger.warning(
                    "Agent %s timed out after %ss (%s)", task.worker_id, task.timeout_seconds, stage
                )
                raise WorkerTimeoutError(
                    task.worker_id,
                    task.timeout_seconds,
                    details={"termination": [str(s) for s in token.history]},
                ) from None
            except asyncio.CancelledError:
                await token.shutdown(process, label=task.worker_id)
                raise
            except OSError as exc:
                await token.shutdown(process, label=task.worker_id)
                raise WorkerExecutionError(
                    f"Failed to run agent {task.worker_id}: {exc}",
                    worker_id=task.worker_id,
                    retryable=is_retryable(exc),
                ) from exc

        text = stdout.decode("utf-8", errors="replace") or stderr.decode("utf-8", errors="replace")
        return WorkerResult(
            worker_id=task.worker_id,
            raw_text=truncate_output(text, self._config.execution.max_output_length),
            exit_status=process.returncode,
            duration_s=time.monotonic() - start,
        )

    async def _spawn(self, worker_id: str, argv: list[str]) -> asyncio.subprocess.Process:
        self.spawn_count += 1
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
            )
        except OSError as exc:
            raise WorkerExecutionError(
                f"Failed to run agent {worker_id}: {exc}",
                worker_id=worker_id,
                retryable=is_retryable(exc),
            ) from exc

    @staticmethod
    def _log_retry(task: WorkerTask) -> Callable[[RetryCallState], None]:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "Agent %s failed (attempt %d): %s",
                task.worker_id, state.attempt_number, exc,
            )
            logger.info(
                "Retrying %s in %dms (retry %d/%d)",
                task.worker_id, round(delay * 1000), state.attempt_number, task.retry.max_retries,
            )

        return _before_sleep
