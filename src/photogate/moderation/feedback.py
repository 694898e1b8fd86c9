"""Feedback channels receive user notifications emitted by the gate.

The gate only produces ``FeedbackEvent`` values; rendering them (toast,
alert, API response) is the caller's job.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from photogate.moderation.types import FeedbackEvent


class FeedbackChannel(Protocol):
    """Protocol for anything that can accept moderation notifications."""

    def emit(self, event: FeedbackEvent) -> None: ...


class FeedbackQueue:
    """Bounded FIFO of transient notifications; the oldest are dropped first."""

    def __init__(self, maxlen: int = 16) -> None:
        self._events: deque[FeedbackEvent] = deque(maxlen=maxlen)

    def emit(self, event: FeedbackEvent) -> None:
        self._events.append(event)

    def pop(self) -> FeedbackEvent | None:
        """Return the oldest pending notification, if any."""
        return self._events.popleft() if self._events else None

    def drain(self) -> list[FeedbackEvent]:
        """Return and clear all pending notifications."""
        events = list(self._events)
        self._events.clear()
        return events

    def __len__(self) -> int:
        return len(self._events)
