"""Decision policy: map a moderation outcome onto a ``Decision``.

| Outcome                      | Decision                                  |
|------------------------------|-------------------------------------------|
| Classified, safe             | Accepted                                  |
| Classified, unsafe           | Rejected(CONTENT_POLICY_VIOLATION)        |
| EngineFailed                 | AcceptedWithWarning(ENGINE_UNAVAILABLE)   |
| InferenceFailed              | AcceptedWithWarning(INFERENCE_FAILED)     |

Unsafe results are always rejected whatever their confidence; thresholds
belong to the classifier. Operational failures fail open, but never silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from photogate.ml.classifier import NSFWClass
from photogate.moderation.types import (
    Accepted,
    AcceptedWithWarning,
    Decision,
    FeedbackEvent,
    FeedbackKind,
    Rejected,
    RejectionReason,
    WarningCause,
)

if TYPE_CHECKING:
    from photogate.ml.classifier import ClassificationResult
    from photogate.ml.image_ref import ImageRef
    from photogate.ml.model_manager import LoadFailure


class InferenceFailure(StrEnum):
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Classified:
    result: ClassificationResult


@dataclass(frozen=True)
class EngineFailed:
    cause: LoadFailure
    detail: str | None = None


@dataclass(frozen=True)
class InferenceFailed:
    cause: InferenceFailure
    detail: str | None = None


Outcome = Classified | EngineFailed | InferenceFailed


def decide(image_ref: ImageRef, outcome: Outcome) -> Decision:
    """Return the decision for one moderation outcome."""
    if isinstance(outcome, Classified):
        result = outcome.result
        if result.is_safe:
            return Accepted(image_ref)
        return Rejected(
            reason=RejectionReason.CONTENT_POLICY_VIOLATION,
            confidence=result.confidence,
            highest_risk=result.highest_risk,
        )
    if isinstance(outcome, EngineFailed):
        return AcceptedWithWarning(
            image_ref,
            cause=WarningCause.ENGINE_UNAVAILABLE,
            detail=f"{outcome.cause}: {outcome.detail}" if outcome.detail else str(outcome.cause),
        )
    if isinstance(outcome, InferenceFailed):
        return AcceptedWithWarning(
            image_ref,
            cause=WarningCause.INFERENCE_FAILED,
            detail=f"{outcome.cause}: {outcome.detail}" if outcome.detail else str(outcome.cause),
        )
    raise TypeError(f"Unsupported moderation outcome: {outcome!r}")


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

_CATEGORY_MESSAGES: dict[NSFWClass, str] = {
    NSFWClass.PORN: "This image appears to contain explicit content ({pct}% confidence). Please upload an appropriate photo.",
    NSFWClass.HENTAI: "This image appears to contain adult content ({pct}% confidence). Please upload an appropriate photo.",
    NSFWClass.SEXY: (
        "This image appears to contain suggestive content ({pct}% confidence). Please upload a more appropriate photo."
    ),
}

GENERIC_REJECTION = "This image may contain inappropriate content. Please upload a different photo."

WARNING_MESSAGES: dict[WarningCause, str] = {
    WarningCause.ENGINE_UNAVAILABLE: "We couldn't check this photo right now, so it will be reviewed after upload.",
    WarningCause.INFERENCE_FAILED: "Could not verify image content. Please try again or select a different image.",
}


def rejection_message(decision: Rejected) -> str:
    """Non-technical explanation of why a photo was not allowed."""
    risk = decision.highest_risk
    if risk is None:
        return GENERIC_REJECTION
    pct = round(risk.probability * 100)
    template = _CATEGORY_MESSAGES.get(
        risk.label,
        "This image may contain inappropriate content ({pct}% confidence). Please upload a different photo.",
    )
    return template.format(pct=pct)


def feedback_for(decision: Decision) -> FeedbackEvent | None:
    """Build the notification for a decision; plain acceptances have none."""
    if isinstance(decision, Rejected):
        return FeedbackEvent(kind=FeedbackKind.REJECTED, message=rejection_message(decision))
    if isinstance(decision, AcceptedWithWarning):
        return FeedbackEvent(kind=FeedbackKind.WARNING, message=WARNING_MESSAGES[decision.cause])
    return None
