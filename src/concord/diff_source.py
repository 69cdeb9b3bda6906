"""Input sources: the uncommitted git diff a debate reviews or plans against."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Protocol

from concord.config.schema import GitConfig
from concord.errors import PreconditionError
from concord.models import DiffResult

log = logging.getLogger(__name__)


class DiffSource(Protocol):
    async def read(self, path: str | None = None) -> DiffResult: ...


def truncate_diff(diff: str, max_lines: int) -> str:
    lines = diff.split("\n")
    if max_lines > 0 and len(lines) > max_lines:
        return "\n".join(lines[:max_lines]) + f"\n\n... (truncated, {len(lines) - max_lines} more lines)"
    return diff


def _git(args: list[str], cwd: Path) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout


def _is_work_tree(cwd: Path) -> bool:
    try:
        _git(["rev-parse", "--is-inside-work-tree"], cwd)
    except (subprocess.CalledProcessError, OSError):
        return False
    return True


def read_diff(path: str | Path | None = None, *, staged: bool = False, max_lines: int = 1000) -> DiffResult:
    """Read ``git diff`` (or ``git diff --cached``) and the changed file names."""
    cwd = Path(path) if path else Path.cwd()
    base = ["diff", "--cached"] if staged else ["diff"]
    try:
        body = _git(base, cwd)
        names = _git([*base, "--name-only"], cwd)
    except (subprocess.CalledProcessError, OSError) as exc:
        if not _is_work_tree(cwd):
            raise PreconditionError(f"Not a git repository: {cwd}", details={"path": str(cwd)}) from exc
        stderr = getattr(exc, "stderr", "") or str(exc)
        raise PreconditionError(f"Failed to read git diff: {stderr.strip()}", details={"path": str(cwd)}) from exc

    files = tuple(f for f in names.strip().split("\n") if f)
    log.debug("git diff in %s: %d file(s)", cwd, len(files))
    return DiffResult(body=truncate_diff(body, max_lines), file_count=len(files), files=files)


class GitDiffSource:
    def __init__(self, config: GitConfig | None = None) -> None:
        self._config = config or GitConfig()

    async def read(self, path: str | None = None) -> DiffResult:
        return await asyncio.to_thread(
            read_diff,
            path,
            staged=self._config.include_staged,
            max_lines=self._config.max_diff_lines,
        )


class StaticDiffSource:
    """A fixed diff, for callers that already hold one (and for tests)."""

    def __init__(self, diff: DiffResult) -> None:
        self._diff = diff

    async def read(self, path: str | None = None) -> DiffResult:
        return self._diff
