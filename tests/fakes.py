"""Scriptable stand-ins for the model loader and classification engine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from photogate.ml.classifier import ClassificationResult, NSFWClass, Prediction

if TYPE_CHECKING:
    from collections.abc import Callable

    from photogate.ml.image_ref import ImageRef

SAFE = ClassificationResult(is_safe=True, confidence=0.0)


def unsafe(confidence: float = 0.91, label: NSFWClass = NSFWClass.PORN) -> ClassificationResult:
    risk = Prediction(label=label, probability=confidence)
    return ClassificationResult(is_safe=False, confidence=confidence, predictions=(risk,), highest_risk=risk)


class ScriptedEngine:
    """Engine returning a scripted outcome per image URI.

    ``hold(uri)`` makes classification of that URI block until the returned
    event is set.
    """

    def __init__(
        self,
        outcomes: dict[str, ClassificationResult | BaseException | None] | None = None,
        default: ClassificationResult | BaseException = SAFE,
    ) -> None:
        self.outcomes = outcomes or {}
        self.default = default
        self.holds: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.completed: list[str] = []

    def hold(self, uri: str) -> asyncio.Event:
        event = asyncio.Event()
        self.holds[uri] = event
        return event

    async def classify(self, image_ref: ImageRef) -> ClassificationResult:
        self.calls.append(image_ref.uri)
        event = self.holds.get(image_ref.uri)
        if event is not None:
            await event.wait()
        self.completed.append(image_ref.uri)
        outcome = self.outcomes.get(image_ref.uri, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome  # type: ignore[return-value]


class ScriptedLoader:
    """Loader that returns or raises each scripted outcome in turn.

    The last outcome repeats once the script is exhausted. Setting
    ``release`` to an event makes every load wait for it.
    """

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes) or [ScriptedEngine()]
        self.calls = 0
        self.release: asyncio.Event | None = None

    async def __call__(self) -> object:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def wait_until(predicate: Callable[[], bool], *, steps: int = 400) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")
