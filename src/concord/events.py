"""Phase event bus for debate runs.

The orchestrator publishes a ``PhaseEvent`` whenever it enters a phase or
finishes a unit of work inside one.  Subscribers (logging, a CLI status
line, tests) register callbacks; the orchestrator never depends on them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from concord.logger import get_logger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PhaseEvent:
    """A single progress event."""

    phase: str
    round: int = 0
    max_rounds: int = 0
    completed: int = 0
    total: int = 0
    message: str = ""
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def progress(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(1.0, self.completed / self.total)


Subscriber = Callable[[PhaseEvent], Any]


class EventBus:
    """In-process pub/sub for phase events.

    A subscriber that raises is logged and skipped; emission never fails
    the run.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._history: list[PhaseEvent] = []

    def emit(self, event: PhaseEvent) -> None:
        self._history.append(event)
        for cb in self._subscribers:
            try:
                cb(event)
            except Exception as exc:
                logger.debug("EventBus subscriber error: %s", exc)

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers = [cb for cb in self._subscribers if cb is not callback]

    @property
    def history(self) -> list[PhaseEvent]:
        return list(self._history)

    def phases(self) -> list[str]:
        """Distinct phases in the order they were first entered."""
        seen: list[str] = []
        for event in self._history:
            if event.phase not in seen:
                seen.append(event.phase)
        return seen


def log_progress(event: PhaseEvent) -> None:
    """Subscriber that renders events through structlog."""
    log = get_logger("concord.progress").bind(phase=event.phase)
    if event.round:
        log = log.bind(round=f"{event.round}/{event.max_rounds}")
    if event.total:
        log = log.bind(progress=f"{event.completed}/{event.total}")
    log.info(event.message or event.phase, **event.data)
