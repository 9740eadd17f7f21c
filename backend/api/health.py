"""
api/health.py
=============
GET /health — liveness check. Also answers GET / when no frontend build is
mounted (see main.create_app).
"""

from typing import Optional

from fastapi import APIRouter, Depends

from backend.api.dependencies import get_inference_runner
from backend.schemas.response import HealthResponse
from ml_models.predictor import InferenceRunner

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(runner: Optional[InferenceRunner] = Depends(get_inference_runner)):
    """Return service status and whether the model is ready."""
    ready = runner is not None and runner.is_ready
    return HealthResponse(
        model_loaded = ready,
        labels       = list(runner.handle.labels) if ready else [],
    )
