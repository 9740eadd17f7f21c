"""
api/dependencies.py
===================
FastAPI dependencies that hand request handlers the objects created by the
lifespan handler (settings, inference runner). Nothing here is a module
global; everything lives on app.state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from backend.config import Settings
from ml_models.predictor import InferenceRunner


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_inference_runner(request: Request) -> Optional[InferenceRunner]:
    """None until the lifespan handler has loaded the model."""
    return getattr(request.app.state, "inference_runner", None)
