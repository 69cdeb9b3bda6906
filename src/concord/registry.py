"""Read-only worker registry and health probe."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from concord.config.schema import AgentConfig, ConcordConfig
from concord.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WorkerHealth:
    name: str
    binary: str
    healthy: bool
    details: str = "ok"


class WorkerRegistry:
    """Lookup and health checks over the configured workers.

    Nothing here mutates after construction, so concurrent tasks may
    share one registry freely.
    """

    def __init__(
        self,
        config: ConcordConfig,
        *,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._config = config
        self._which = which

    @property
    def names(self) -> list[str]:
        return self._config.agent_names

    @property
    def default_names(self) -> tuple[str, ...]:
        return self._config.debate.default_agents

    def get(self, name: str) -> AgentConfig:
        return self._config.agent(name)

    def resolve(self, requested: Sequence[str] | None) -> tuple[str, ...]:
        """Return the requested worker ids (or the defaults), validated."""
        names = tuple(requested) if requested else self.default_names
        unknown = [n for n in names if n not in self._config.agents]
        if unknown:
            raise ConfigurationError(
                f'Agent "{unknown[0]}" not configured. '
                f"Available agents: {', '.join(self.names)}",
                details={"unknown": unknown, "available": self.names},
            )
        # preserve order, drop duplicates
        return tuple(dict.fromkeys(names))

    def check_health(self, name: str, *, probe: bool = False) -> WorkerHealth:
        """Check that a worker's binary can be executed.

        Explicit paths must exist and be executable; bare command names
        must resolve on PATH.  With ``probe`` the binary is also run with
        ``--version`` (falling back to ``--help``).
        """
        agent = self.get(name)
        binary = agent.binary
        if os.sep in binary or os.path.isabs(binary):
            if not os.path.exists(binary):
                return WorkerHealth(name, binary, False, f"binary not found: {binary}")
            if not os.access(binary, os.X_OK):
                return WorkerHealth(name, binary, False, f"binary not executable: {binary}")
        elif self._which(binary) is None:
            return WorkerHealth(name, binary, False, f"missing binary `{binary}`")

        if probe:
            return self._probe(name, binary)
        return WorkerHealth(name, binary, True)

    def _probe(self, name: str, binary: str) -> WorkerHealth:
        last_error = ""
        for flag in ("--version", "--help"):
            try:
                subprocess.run(
                    [binary, flag],
                    capture_output=True,
                    timeout=10,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                return WorkerHealth(name, binary, False, f"health check timed out for {binary}")
            except OSError as exc:
                last_error = f"cannot execute binary: {exc}"
                continue
            # a non-zero exit still means the binary runs
            return WorkerHealth(name, binary, True)
        return WorkerHealth(name, binary, False, last_error)

    def filter_healthy(
        self,
        names: Sequence[str],
        *,
        min_required: int = 2,
        probe: bool = False,
    ) -> tuple[list[str], list[str]]:
        """Split *names* into healthy workers plus human-readable warnings."""
        warnings: list[str] = []
        known: list[str] = []
        for name in names:
            if name not in self._config.agents:
                warnings.append(f'Agent "{name}" not configured, skipping')
                continue
            known.append(name)

        healthy: list[str] = []
        unhealthy: list[WorkerHealth] = []
        for name in known:
            status = self.check_health(name, probe=probe)
            if status.healthy:
                healthy.append(name)
            else:
                unhealthy.append(status)

        if unhealthy:
            logger.warning(
                "Unhealthy agents: %s",
                ", ".join(f"{h.name} ({h.details})" for h in unhealthy),
            )
            warnings.append(f"{len(unhealthy)} agent(s) are unhealthy and will be skipped")
        if len(healthy) < min_required:
            warnings.append(
                f"Only {len(healthy)} healthy agent(s) available, "
                f"minimum {min_required} required for debate"
            )
        return healthy, warnings
