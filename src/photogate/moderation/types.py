"""Decision and feedback value types produced by the moderation gate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from photogate.ml.classifier import Prediction
    from photogate.ml.image_ref import ImageRef


class DecisionKind(StrEnum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ACCEPTED_WITH_WARNING = "accepted_with_warning"


class RejectionReason(StrEnum):
    CONTENT_POLICY_VIOLATION = "content_policy_violation"


class WarningCause(StrEnum):
    ENGINE_UNAVAILABLE = "engine_unavailable"
    INFERENCE_FAILED = "inference_failed"


@dataclass(frozen=True)
class Accepted:
    """The image passed moderation."""

    kind: ClassVar[DecisionKind] = DecisionKind.ACCEPTED
    allows_upload: ClassVar[bool] = True

    image_ref: ImageRef


@dataclass(frozen=True)
class Rejected:
    """The classifier ran and found the image unsafe."""

    kind: ClassVar[DecisionKind] = DecisionKind.REJECTED
    allows_upload: ClassVar[bool] = False

    reason: RejectionReason = RejectionReason.CONTENT_POLICY_VIOLATION
    confidence: float = 0.0
    highest_risk: Prediction | None = None


@dataclass(frozen=True)
class AcceptedWithWarning:
    """The image is let through because moderation could not run.

    Callers should flag the image for later review instead of treating it as
    a plain acceptance.
    """

    kind: ClassVar[DecisionKind] = DecisionKind.ACCEPTED_WITH_WARNING
    allows_upload: ClassVar[bool] = True

    image_ref: ImageRef
    cause: WarningCause
    detail: str | None = None


Decision = Accepted | Rejected | AcceptedWithWarning


class FeedbackKind(StrEnum):
    REJECTED = "rejected"
    WARNING = "warning"


@dataclass(frozen=True)
class FeedbackEvent:
    """User notification payload handed to a feedback channel."""

    kind: FeedbackKind
    message: str
