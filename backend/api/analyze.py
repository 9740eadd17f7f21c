"""
api/analyze.py
==============
POST /analyze   (aliases: /predict, /upload)
-------------------------------------------
Accepts a multipart/form-data request with one image in the field `image`
(or `file`, for older clients) and returns the predicted severity.

Each request moves through

  RECEIVED → VALIDATED → PREPROCESSED → INFERRED → RESPONDED

and drops to FAILED(kind) from wherever an error is raised:

  1. Validate the upload (presence, image/* MIME type, ≤ MAX_UPLOAD_BYTES)
  2. Stage it under UPLOAD_DIR (removed when the request finishes)
  3. Decode / resize / normalise (worker thread)
  4. Predict on the bounded inference pool, with a timeout
  5. Serialise to AnalyzeResponse

The staged file and the input tensor are released on every exit path,
including client disconnects (task cancellation).
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

import torch
from fastapi import APIRouter, Depends, File, UploadFile

from backend.api.dependencies import get_inference_runner, get_settings
from backend.config import Settings
from backend.intake import read_upload, staged_upload
from backend.schemas.response import AnalyzeResponse, ErrorResponse
from ml_models.errors import ModelNotReadyError, PipelineError
from ml_models.predictor import InferenceRunner
from ml_models.preprocessing import preprocess_image

logger = logging.getLogger(__name__)

router = APIRouter()


class RequestState(str, enum.Enum):
    RECEIVED     = "Received"
    VALIDATED    = "Validated"
    PREPROCESSED = "Preprocessed"
    INFERRED     = "Inferred"
    RESPONDED    = "Responded"
    FAILED       = "Failed"


class _RequestTrace:
    """Tracks and logs the state of one analysis request."""

    def __init__(self) -> None:
        self.request_id = f"req-{uuid.uuid4().hex[:8]}"
        self.state = RequestState.RECEIVED
        self._start = time.perf_counter()

    def advance(self, state: RequestState) -> None:
        logger.debug("%s: %s → %s", self.request_id, self.state.value, state.value)
        self.state = state

    def fail(self, exc: PipelineError) -> None:
        logger.warning(
            "%s: %s → Failed(%s): %s",
            self.request_id, self.state.value, exc.kind, exc.message,
        )
        self.state = RequestState.FAILED

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing, invalid or undecodable image"},
    500: {"model": ErrorResponse, "description": "Inference failed"},
    503: {"model": ErrorResponse, "description": "Model not loaded, retry later"},
}


@router.post("/analyze", response_model=AnalyzeResponse, responses=_ERROR_RESPONSES)
@router.post("/predict", response_model=AnalyzeResponse, include_in_schema=False)
@router.post("/upload", response_model=AnalyzeResponse, include_in_schema=False)
async def analyze(
    image: Optional[UploadFile] = File(None, description="Image file (≤5 MB, image/*)"),
    file: Optional[UploadFile] = File(None, description="Alternative field name for the image"),
    settings: Settings = Depends(get_settings),
    runner: Optional[InferenceRunner] = Depends(get_inference_runner),
):
    """Run the upload → preprocess → inference pipeline for one image."""
    trace = _RequestTrace()
    try:
        # ── 1. Validate upload ─────────────────────────────────────────────
        uploaded = await read_upload(image if image is not None else file, settings.max_upload_bytes)
        trace.advance(RequestState.VALIDATED)

        # ── 2. Stage to disk; removed when the block exits ────────────────
        async with staged_upload(uploaded, settings.upload_dir) as staged_path:
            # ── 3. Preprocess (CPU-bound, off the event loop) ─────────────
            tensor: Optional[torch.Tensor] = await asyncio.to_thread(_preprocess_staged, staged_path)
            trace.advance(RequestState.PREPROCESSED)

            # ── 4. Inference on the bounded pool ──────────────────────────
            try:
                if runner is None:
                    raise ModelNotReadyError("Model is not loaded yet. Please retry later.")
                result = await runner.run(tensor)
            finally:
                tensor = None
            trace.advance(RequestState.INFERRED)

    except PipelineError as exc:
        trace.fail(exc)
        raise

    # ── 5. Respond ─────────────────────────────────────────────────────────
    response = AnalyzeResponse(
        severityLevel = result.severity_level,
        label         = result.label,
        confidence    = result.confidence,
    )
    trace.advance(RequestState.RESPONDED)
    logger.info(
        "%s: severity=%d (%s) confidence=%.4f latency=%.1fms",
        trace.request_id, result.severity_level, result.label,
        result.confidence, trace.elapsed_ms,
    )
    return response


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

def _preprocess_staged(path: str) -> torch.Tensor:
    return preprocess_image(Path(path).read_bytes())
