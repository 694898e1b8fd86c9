"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photogate.api.routes import router
from photogate.config import get_settings
from photogate.ml.inference import InferencePool
from photogate.ml.model_manager import ModelLifecycleManager, OnnxModelLoader
from photogate.moderation.gate import GateRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting photogate (device=%s, max_concurrent=%s, model=%s, moderation_enabled=%s)",
        settings.device,
        settings.max_concurrent,
        settings.moderation_model,
        settings.moderation_enabled,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    manager = ModelLifecycleManager(
        OnnxModelLoader(settings, inference_pool),
        load_timeout=settings.load_timeout,
    )
    app.state.model_manager = manager
    app.state.gates = GateRegistry(manager, inference_timeout=settings.inference_timeout)

    if settings.moderation_enabled and settings.preload_on_startup:
        app.state.preload_task = manager.preload()

    logger.info("photogate ready")
    yield

    logger.info("Shutting down photogate")
    manager.shutdown()
    inference_pool.shutdown()
    logger.info("photogate shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="photogate",
        description="Content moderation gate for user-selected photos",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("photogate.main:app", host=settings.host, port=settings.port)
