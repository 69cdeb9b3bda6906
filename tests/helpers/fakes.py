"""Deterministic stand-ins for worker processes."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from concord.config.schema import AgentConfig, ConcordConfig, DebateConfig, ExecutionConfig, RetryConfig
from concord.executor import ProcessExecutor
from concord.models import DiffResult, Finding, StructuredResult, WorkerOutput, WorkerResult, WorkerTask
from concord.registry import WorkerRegistry

DIFF = DiffResult(
    body=(
        "diff --git a/src/session.py b/src/session.py\n"
        "--- a/src/session.py\n"
        "+++ b/src/session.py\n"
        "@@ -40,3 +40,4 @@\n"
        "+    user = session.get('user')\n"
        "+    return user.name\n"
    ),
    file_count=1,
    files=("src/session.py",),
)


def make_config(*names: str, max_retries: int = 0, **debate: Any) -> ConcordConfig:
    names = names or ("alpha", "beta")
    agents = {n: AgentConfig(name=n, binary=f"fake-{n}", timeout_seconds=5.0) for n in names}
    return ConcordConfig(
        agents=agents,
        execution=ExecutionConfig(retry=RetryConfig(max_retries=max_retries, base_delay_seconds=0.0)),
        debate=DebateConfig(default_agents=tuple(names[:2]), **debate),
    )


def fake_registry(config: ConcordConfig, missing: tuple[str, ...] = ()) -> WorkerRegistry:
    def which(binary: str) -> str | None:
        return None if binary in missing else f"/usr/bin/{binary}"

    return WorkerRegistry(config, which=which)


def prompt_kind(prompt: str) -> str:
    if "You are validating" in prompt:
        return "validate"
    if "You won a" in prompt:
        return "compose"
    if "You are reviewing another agent" in prompt:
        return "critique"
    return "generate"


Reply = str | BaseException
Script = Callable[[str, str, int], Reply]


class ScriptedExecutor(ProcessExecutor):
    """Executor whose attempts are answered by ``script(worker, kind, call_no)``.

    ``call_no`` counts calls per ``(worker, kind)`` starting at 1.  Returning
    an exception raises it from the attempt.
    """

    def __init__(self, config: ConcordConfig, script: Script) -> None:
        super().__init__(config, sleep=_no_sleep)
        self._script = script
        self._counts: dict[tuple[str, str], int] = defaultdict(int)
        self.calls: list[tuple[str, str]] = []

    async def run_once(self, task: WorkerTask) -> WorkerResult:
        kind = prompt_kind(task.prompt)
        self._counts[(task.worker_id, kind)] += 1
        self.calls.append((task.worker_id, kind))
        reply = self._script(task.worker_id, kind, self._counts[(task.worker_id, kind)])
        if isinstance(reply, BaseException):
            raise reply
        return WorkerResult(worker_id=task.worker_id, raw_text=reply, exit_status=0, duration_s=0.01)

    def calls_of(self, kind: str) -> list[str]:
        return [worker for worker, k in self.calls if k == kind]


async def _no_sleep(_: float) -> None:
    return None


def review_json(*findings: dict[str, Any], risks: list[str] | None = None) -> str:
    return "Here is my review:\n" + json.dumps({
        "findings": list(findings),
        "residual_risks": risks or [],
        "open_questions": [],
    })


def finding(severity: str, title: str, file: str = "src/session.py:41", fix: str = "Check `user` for None") -> dict:
    return {"severity": severity, "title": title, "file": file, "detail": f"{title} in the session path", "fix": fix}


NULL_USER = finding("P0", "Null user dereference in session handler")
MISSING_TEST = finding("P2", "Missing regression test for logout flow", file="tests/test_session.py")
RACE = finding("P1", "Race condition refreshing cached tokens", file="src/tokens.py:10")


def output(worker: str, *items: Finding, risks: tuple[str, ...] = ()) -> WorkerOutput:
    return WorkerOutput(
        worker_id=worker,
        raw_text="{}",
        structured=StructuredResult(items=items, residual_risks=risks),
    )
