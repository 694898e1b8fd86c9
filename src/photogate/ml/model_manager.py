"""Model lifecycle: download, load, and share the moderation model.

``ModelLifecycleManager`` owns the loading state of the classification
resource (``unloaded -> loading -> ready | failed``). Concurrent callers of
``ensure_ready()`` share a single in-flight load, and a failed load is retried
on the next call. ``OnnxModelLoader`` is the production loader: it downloads
the model from HuggingFace and wraps an ONNX InferenceSession.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from photogate.ml.classifier import NSFWClass, OnnxNSFWClassifier, parse_thresholds

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from photogate.config import Settings
    from photogate.ml.classifier import ClassificationEngine
    from photogate.ml.inference import InferencePool
    from photogate.ml.preprocessing import TensorLayout

    EngineLoader = Callable[[], Awaitable[ClassificationEngine]]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


NSFW_LABELS: tuple[NSFWClass, ...] = (
    NSFWClass.DRAWING,
    NSFWClass.HENTAI,
    NSFWClass.NEUTRAL,
    NSFWClass.PORN,
    NSFWClass.SEXY,
)


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX moderation model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    input_size: int
    layout: TensorLayout
    labels: tuple[NSFWClass, ...]
    license: str
    # True when the exported graph has no softmax head
    outputs_logits: bool = False


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "nsfw_mobilenet_v2": ModelSpec(
        name="nsfw_mobilenet_v2",
        repo_id="photogate/photogate-models",
        filename="nsfw_mobilenet_v2_224.onnx",
        subfolder=None,
        input_size=224,
        layout="nhwc",
        labels=NSFW_LABELS,
        license="MIT",
    ),
    "nsfw_inception_v3": ModelSpec(
        name="nsfw_inception_v3",
        repo_id="photogate/photogate-models",
        filename="nsfw_inception_v3_299.onnx",
        subfolder=None,
        input_size=299,
        layout="nhwc",
        labels=NSFW_LABELS,
        license="MIT",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Lifecycle state
# ---------------------------------------------------------------------------


class ModelStatus(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class LoadFailure(StrEnum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ModelState:
    """Snapshot of the moderation model's loading state."""

    status: ModelStatus
    cause: LoadFailure | None = None
    error: str | None = None

    @property
    def ready(self) -> bool:
        return self.status is ModelStatus.READY

    @classmethod
    def failed(cls, cause: LoadFailure, error: str) -> ModelState:
        return cls(status=ModelStatus.FAILED, cause=cause, error=error)


UNLOADED = ModelState(ModelStatus.UNLOADED)
LOADING = ModelState(ModelStatus.LOADING)
READY = ModelState(ModelStatus.READY)


def classify_load_error(exc: BaseException) -> LoadFailure:
    """Map a loader exception onto a failure cause."""
    # TimeoutError subclasses OSError, so it must be checked first.
    if isinstance(exc, TimeoutError):
        return LoadFailure.TIMEOUT
    if isinstance(exc, (OSError, ImportError, HfHubHTTPError, LocalEntryNotFoundError)):
        return LoadFailure.UNAVAILABLE
    return LoadFailure.UNKNOWN


class ModelLifecycleManager:
    """Loads the classification engine at most once at a time and shares it.

    One instance is created per process and injected into every gate. Load
    failures never raise out of ``ensure_ready()``; they resolve to a failed
    ``ModelState`` and the next call starts a fresh attempt.
    """

    def __init__(self, loader: EngineLoader, *, load_timeout: float | None = None) -> None:
        self._loader = loader
        self._load_timeout = load_timeout
        self._state: ModelState = UNLOADED
        self._engine: ClassificationEngine | None = None
        self._inflight: asyncio.Task[ModelState] | None = None
        self._load_count = 0

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def load_count(self) -> int:
        """Number of load attempts started so far."""
        return self._load_count

    @property
    def load_error(self) -> str | None:
        """Error message of the last failed load, if the model is failed."""
        return self._state.error

    @property
    def engine(self) -> ClassificationEngine:
        """Return the loaded engine.

        Raises:
            RuntimeError: If the model is not ready.
        """
        if self._engine is None or not self._state.ready:
            raise RuntimeError(f"Moderation model is not ready (state={self._state.status})")
        return self._engine

    def is_ready(self) -> bool:
        """Non-blocking check that the model is loaded."""
        return self._state.ready

    def is_loading(self) -> bool:
        return self._inflight is not None

    async def ensure_ready(self) -> ModelState:
        """Load the model if needed and return the resulting state.

        Calls made while a load is in flight await that same load. Cancelling
        a caller does not cancel the shared load, and a load cancelled by
        ``shutdown()`` resolves its waiters to a failed state.
        """
        if self._state.ready:
            return self._state

        if self._inflight is None:
            self._state = LOADING
            self._inflight = asyncio.create_task(self._load(), name="photogate-model-load")
        inflight = self._inflight
        try:
            return await asyncio.shield(inflight)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not inflight.cancelled() or (current is not None and current.cancelling()):
                raise
            return ModelState.failed(LoadFailure.UNAVAILABLE, "Model manager shut down")

    def preload(self) -> asyncio.Task[ModelState]:
        """Start loading in the background without waiting for the result."""
        return asyncio.create_task(self.ensure_ready(), name="photogate-model-preload")

    def shutdown(self) -> None:
        """Cancel any in-flight load and drop the loaded engine."""
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
        self._engine = None
        self._state = UNLOADED
        logger.info("Moderation model unloaded")

    # -- Internal -----------------------------------------------------------

    async def _load(self) -> ModelState:
        self._load_count += 1
        attempt = self._load_count
        logger.info("Loading moderation model (attempt %d)", attempt)
        try:
            engine = await asyncio.wait_for(self._loader(), timeout=self._load_timeout)
        except Exception as exc:
            cause = classify_load_error(exc)
            message = str(exc) or type(exc).__name__
            if cause is LoadFailure.TIMEOUT:
                message = f"Model load exceeded {self._load_timeout}s"
            state = ModelState.failed(cause, message)
            logger.warning("Moderation model failed to load (attempt %d, cause=%s): %s", attempt, cause, message)
        else:
            self._engine = engine
            state = READY
            logger.info("Moderation model ready (attempt %d)", attempt)

        self._state = state
        self._inflight = None
        return state


# ---------------------------------------------------------------------------
# ONNX loader
# ---------------------------------------------------------------------------


class OnnxModelLoader:
    """Downloads the configured model and builds an ``OnnxNSFWClassifier``."""

    def __init__(self, settings: Settings, pool: InferencePool) -> None:
        self._settings = settings
        self._pool = pool
        self._spec = get_spec(settings.moderation_model)
        self._thresholds = parse_thresholds(settings.nsfw_thresholds)
        self._models_dir = Path(settings.models_dir)

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()
        self._session_job: asyncio.Task[InferenceSession] | None = None

    @property
    def spec(self) -> ModelSpec:
        return self._spec

    async def __call__(self) -> OnnxNSFWClassifier:
        job = self._session_job
        if job is None or (job.done() and (job.cancelled() or job.exception() is not None)):
            job = asyncio.create_task(self._pool.run(self._create_session), name="photogate-session-build")
            self._session_job = job
        # A timed-out load leaves the build running; the next attempt picks it up.
        session = await asyncio.shield(job)
        self._session_job = None
        return OnnxNSFWClassifier(
            session,
            self._spec,
            self._pool,
            thresholds=self._thresholds,
            max_image_pixels=self._settings.max_image_pixels,
            max_file_size=self._settings.max_file_size,
        )

    def ensure_downloaded(self) -> Path:
        """Download the model from HuggingFace if not already present locally."""
        spec = self._spec
        local = self._models_dir / (spec.subfolder or "") / spec.filename
        if local.exists():
            return local

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        logger.info("Downloaded %s to %s", spec.name, downloaded)
        return downloaded

    def _create_session(self) -> InferenceSession:
        model_path = self.ensure_downloaded()
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Loaded session for %s", self._spec.name)
        return session

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
