"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status

from photogate.api.middleware import Caller, authenticate_caller
from photogate.api.schemas import (
    ErrorResponse,
    FeedbackPayload,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ModelStateResponse,
    ModerationResponse,
)
from photogate.ml.image_ref import ImageRef, InvalidImageRefError
from photogate.ml.model_manager import MODEL_REGISTRY
from photogate.moderation.policy import feedback_for
from photogate.moderation.types import AcceptedWithWarning, DecisionKind, Rejected

if TYPE_CHECKING:
    from photogate.config import Settings
    from photogate.ml.inference import InferencePool
    from photogate.ml.model_manager import ModelLifecycleManager, ModelState
    from photogate.moderation.gate import GateRegistry
    from photogate.moderation.types import Decision

router = APIRouter(prefix="/api/v1", dependencies=[Depends(authenticate_caller)])

_READ_CHUNK = 1 << 16


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_gates(request: Request) -> GateRegistry:
    gates: GateRegistry = request.app.state.gates
    return gates


def _get_model_manager(request: Request) -> ModelLifecycleManager:
    manager: ModelLifecycleManager = request.app.state.model_manager
    return manager


def _state_response(state: ModelState) -> ModelStateResponse:
    return ModelStateResponse(
        status=str(state.status),
        cause=str(state.cause) if state.cause else None,
        error=state.error,
    )


def _decision_response(decision: Decision) -> ModerationResponse:
    fields: dict[str, object] = {"decision": str(decision.kind), "allowed": decision.allows_upload}
    if isinstance(decision, Rejected):
        fields["reason"] = str(decision.reason)
        fields["confidence"] = decision.confidence
        if decision.highest_risk is not None:
            fields["category"] = str(decision.highest_risk.label)
    elif isinstance(decision, AcceptedWithWarning):
        fields["cause"] = str(decision.cause)

    event = feedback_for(decision)
    if event is not None:
        fields["feedback"] = FeedbackPayload(kind=str(event.kind), message=event.message)
    return ModerationResponse(**fields)  # type: ignore[arg-type]


async def _read_limited(file: UploadFile, limit: int) -> bytes:
    chunks: list[bytes] = []
    size = 0
    while chunk := await file.read(_READ_CHUNK):
        size += len(chunk)
        if size > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Image exceeds {limit} bytes",
            )
        chunks.append(chunk)
    return b"".join(chunks)


@router.post(
    "/moderate",
    response_model=ModerationResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    },
    summary="Moderate a candidate photo",
)
async def moderate(
    request: Request,
    file: UploadFile,
    caller: Annotated[Caller, Depends(authenticate_caller)],
    slot: Annotated[str | None, Form()] = None,
) -> ModerationResponse:
    """Decide whether an uploaded photo may be used.

    ``slot`` names the caller's picker. A newer request on the same slot
    supersedes an older one still in flight, which gets 409. Requests without
    a slot are evaluated on their own and never superseded.
    """
    settings = _get_settings(request)
    data = await _read_limited(file, settings.max_file_size)

    if not settings.moderation_enabled:
        return ModerationResponse(decision=str(DecisionKind.ACCEPTED), allowed=True)

    ref = ImageRef.from_bytes(data, name=file.filename or "upload")
    try:
        decision = await _get_gates(request).evaluate(ref, slot=slot, owner=caller.identity)
    except InvalidImageRefError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    if decision is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Superseded by a newer selection on slot '{slot}'",
        )
    return _decision_response(decision)


@router.post(
    "/models/load",
    response_model=ModelStateResponse,
    summary="Load or retry loading the moderation model",
)
async def load_model(request: Request) -> ModelStateResponse:
    """Wait for the moderation model to be ready, retrying a failed load."""
    state = await _get_model_manager(request).ensure_ready()
    return _state_response(state)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        moderation_enabled=settings.moderation_enabled,
        model=_state_response(manager.state),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available moderation models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and which one is configured."""
    settings = _get_settings(request)
    models = [
        ModelInfo(
            name=spec.name,
            input_size=spec.input_size,
            status="active" if spec.name == settings.moderation_model else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
