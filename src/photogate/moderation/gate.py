"""Moderation gate: the single entry point deciding whether a photo may be used.

Flow:
    evaluate(ref) -> ModelLifecycleManager.ensure_ready() -> engine.classify(ref)
        -> policy.decide() -> Decision

One ``ModerationGate`` serves one UI slot (an avatar picker, a dog photo
picker). A newer ``evaluate()`` on the same gate supersedes an older one:
the older call still runs to completion, but its decision is dropped and it
returns ``None``. Every operational failure becomes a ``Decision``; only
invalid image references and cancellation propagate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from photogate.ml.classifier import ClassificationResult
from photogate.ml.image_ref import ImageRef
from photogate.ml.model_manager import LoadFailure, ModelState
from photogate.moderation.policy import (
    Classified,
    EngineFailed,
    InferenceFailed,
    InferenceFailure,
    decide,
    feedback_for,
)
from photogate.moderation.types import AcceptedWithWarning

if TYPE_CHECKING:
    import os
    from collections.abc import Callable

    from photogate.ml.model_manager import ModelLifecycleManager
    from photogate.moderation.feedback import FeedbackChannel
    from photogate.moderation.policy import Outcome
    from photogate.moderation.types import Decision

logger = logging.getLogger(__name__)


class ModerationGate:
    """Sequences model readiness, classification, and policy for one slot."""

    def __init__(
        self,
        manager: ModelLifecycleManager,
        *,
        inference_timeout: float | None = None,
        feedback: FeedbackChannel | None = None,
        on_decision: Callable[[Decision], None] | None = None,
        slot: str = "default",
    ) -> None:
        self._manager = manager
        self._inference_timeout = inference_timeout
        self._feedback = feedback
        self._on_decision = on_decision
        self._slot = slot
        self._generation = 0
        self._pending = 0
        self._background: set[asyncio.Task[ClassificationResult]] = set()

    @property
    def slot(self) -> str:
        return self._slot

    @property
    def generation(self) -> int:
        """Sequence number of the most recent ``evaluate()`` call."""
        return self._generation

    @property
    def is_pending(self) -> bool:
        """Whether any ``evaluate()`` call is still running."""
        return self._pending > 0

    async def evaluate(self, image_ref: ImageRef | str | os.PathLike[str]) -> Decision | None:
        """Decide whether ``image_ref`` may be used.

        Returns:
            The decision, or ``None`` if a newer call on this gate superseded
            this one before it finished.

        Raises:
            InvalidImageRefError: If the reference is empty or unreadable.
        """
        ref = ImageRef.coerce(image_ref)
        ref.validate()

        self._generation += 1
        generation = self._generation
        self._pending += 1
        try:
            decision = decide(ref, await self._moderate(ref))
        finally:
            self._pending -= 1

        if generation != self._generation:
            logger.debug(
                "Discarding superseded %s decision for %s (slot=%s, generation %d < %d)",
                decision.kind,
                ref.uri,
                self._slot,
                generation,
                self._generation,
            )
            return None

        self._deliver(ref, decision)
        return decision

    # -- Internal -----------------------------------------------------------

    async def _moderate(self, ref: ImageRef) -> Outcome:
        try:
            state = await self._manager.ensure_ready()
        except Exception as exc:
            logger.exception("Model readiness check failed for slot %s", self._slot)
            state = ModelState.failed(LoadFailure.UNKNOWN, str(exc) or type(exc).__name__)

        if not state.ready:
            return EngineFailed(cause=state.cause or LoadFailure.UNKNOWN, detail=state.error)

        try:
            result = await self._classify(ref)
        except TimeoutError:
            return InferenceFailed(
                cause=InferenceFailure.TIMEOUT,
                detail=f"Classification exceeded {self._inference_timeout}s",
            )
        except Exception as exc:
            logger.debug("Classification of %s failed", ref.uri, exc_info=True)
            return InferenceFailed(cause=InferenceFailure.ERROR, detail=f"{type(exc).__name__}: {exc}")
        if not isinstance(result, ClassificationResult):
            return InferenceFailed(cause=InferenceFailure.ERROR, detail=f"Engine returned {type(result).__name__}")
        return Classified(result)

    async def _classify(self, ref: ImageRef) -> ClassificationResult:
        engine = self._manager.engine
        if self._inference_timeout is None:
            return await engine.classify(ref)

        # Shielded so a timed-out classification finishes in the background
        # instead of being cancelled mid-inference.
        task = asyncio.ensure_future(engine.classify(ref))
        self._background.add(task)
        task.add_done_callback(self._reap)
        return await asyncio.wait_for(asyncio.shield(task), timeout=self._inference_timeout)

    def _reap(self, task: asyncio.Task[ClassificationResult]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background classification on slot %s ended with %r", self._slot, task.exception())

    def _deliver(self, ref: ImageRef, decision: Decision) -> None:
        if isinstance(decision, AcceptedWithWarning):
            logger.warning(
                "Accepted %s without moderation (slot=%s, cause=%s, detail=%s); flag for review",
                ref.uri,
                self._slot,
                decision.cause,
                decision.detail,
            )

        if self._on_decision is not None:
            try:
                self._on_decision(decision)
            except Exception:
                logger.exception("Decision callback failed for slot %s", self._slot)

        event = feedback_for(decision)
        if event is not None and self._feedback is not None:
            try:
                self._feedback.emit(event)
            except Exception:
                logger.exception("Feedback channel failed for slot %s", self._slot)


class GateRegistry:
    """Hands out ``ModerationGate`` instances keyed by owner and slot.

    A gate stays registered only while it has calls in flight. Once idle it is
    dropped, so the registry never holds more gates than there are slots with
    a pending decision. Calls without a slot run on a fresh, unregistered gate
    and are never superseded.
    """

    def __init__(
        self,
        manager: ModelLifecycleManager,
        *,
        inference_timeout: float | None = None,
        feedback: FeedbackChannel | None = None,
    ) -> None:
        self._manager = manager
        self._inference_timeout = inference_timeout
        self._feedback = feedback
        self._gates: dict[tuple[str, str], ModerationGate] = {}

    def __len__(self) -> int:
        return len(self._gates)

    @property
    def manager(self) -> ModelLifecycleManager:
        return self._manager

    def active_slots(self) -> list[tuple[str, str]]:
        """``(owner, slot)`` pairs with a decision still in flight."""
        return list(self._gates)

    async def evaluate(
        self,
        image_ref: ImageRef | str | os.PathLike[str],
        *,
        slot: str | None = None,
        owner: str = "",
    ) -> Decision | None:
        """Evaluate ``image_ref`` on the gate for ``(owner, slot)``.

        Returns ``None`` when a newer call on the same owner and slot
        superseded this one.
        """
        if slot is None:
            return await self._new_gate().evaluate(image_ref)

        key = (owner, slot)
        gate = self._gates.get(key)
        if gate is None:
            gate = self._gates[key] = self._new_gate(slot)
        try:
            return await gate.evaluate(image_ref)
        finally:
            if not gate.is_pending and self._gates.get(key) is gate:
                del self._gates[key]

    def _new_gate(self, slot: str = "unscoped") -> ModerationGate:
        return ModerationGate(
            self._manager,
            inference_timeout=self._inference_timeout,
            feedback=self._feedback,
            slot=slot,
        )
