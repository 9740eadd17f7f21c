"""
main.py
=======
FastAPI application entry point for SeverityScan.

Run locally:
  cd SeverityScan
  python -m backend.main               # honours PORT (default 5000)
  uvicorn backend.main:app --reload --port 5000

The lifespan handler loads the severity model once at startup and keeps it on
app.state for the life of the process. If the model cannot be loaded, startup
fails and the server exits non-zero without ever accepting requests.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv  # type: ignore
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from backend.api.analyze import router as analyze_router
from backend.api.health import health_check, router as health_router
from backend.config import Settings
from backend.errors import register_exception_handlers
from backend.schemas.response import HealthResponse
from ml_models.predictor import InferenceRunner, ModelHandle, load_model

# Load .env from project root (one level above this file's package)
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

# The level is applied from Settings in create_app().
logging.basicConfig(
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

ModelLoaderFn = Callable[[Settings], ModelHandle]


def _load_from_settings(settings: Settings) -> ModelHandle:
    return load_model(settings.model_dir, device=settings.model_device)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown
# ---------------------------------------------------------------------------

def _make_lifespan(model_loader: ModelLoaderFn):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load the model before the first request; fail hard if it cannot be."""
        settings: Settings = app.state.settings
        logger.info("SeverityScan backend starting up…")

        try:
            handle = model_loader(settings)
        except Exception as exc:
            logger.critical("Model failed to load, refusing to serve: %s", exc)
            raise

        runner = InferenceRunner(
            handle,
            max_workers = settings.inference_workers,
            timeout     = settings.inference_timeout,
        )
        app.state.inference_runner = runner
        logger.info("Model loaded from %s. Ready.", handle.source)

        try:
            yield
        finally:
            app.state.inference_runner = None
            runner.shutdown()
            logger.info("SeverityScan backend shutting down.")

    return lifespan


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    model_loader: ModelLoaderFn = _load_from_settings,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)

    app = FastAPI(
        title       = "SeverityScan API",
        description = (
            "Image severity classification: upload an image, receive one of "
            "Extremely Mild / Mild / Moderate / Severe with a confidence score."
        ),
        version     = "1.0.0",
        docs_url    = "/docs",
        redoc_url   = "/redoc",
        lifespan    = _make_lifespan(model_loader),
    )
    app.state.settings = settings
    app.state.inference_runner = None

    # ── CORS ──────────────────────────────────────────────────────────────
    origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = origins,
        allow_credentials = "*" not in origins,
        allow_methods     = ["GET", "POST"],
        allow_headers     = ["*"],
    )

    register_exception_handlers(app)

    # ── Routers ───────────────────────────────────────────────────────────
    app.include_router(health_router)
    app.include_router(analyze_router)

    # ── Static files ──────────────────────────────────────────────────────
    os.makedirs(settings.upload_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    if os.path.isdir(settings.model_dir):
        app.mount("/models", StaticFiles(directory=settings.model_dir), name="models")

    if os.path.isdir(settings.dist_dir):
        app.mount("/", StaticFiles(directory=settings.dist_dir, html=True), name="frontend")
    else:
        app.add_api_route("/", health_check, methods=["GET"], response_model=HealthResponse)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings: Settings = app.state.settings
    logger.info("Server starting on http://%s:%d", _settings.host, _settings.port)
    uvicorn.run(app, host=_settings.host, port=_settings.port, lifespan="on")
