"""
predictor.py
============
Loads the trained SeverityClassifier and turns a preprocessed tensor into a
PredictionResult.

  • load_model()      — build the ModelHandle once at startup. A missing or
                        corrupt weight file raises ModelLoadError; there is no
                        fallback to random weights.
  • predict()         — synchronous argmax inference against a handle.
  • InferenceRunner   — offloads predict() to a bounded thread pool with a
                        timeout so the event loop keeps accepting uploads.

The handle is passed explicitly (the FastAPI app keeps it on app.state) so tests
can substitute any callable module.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import numpy as np
import torch

from ml_models.architecture import SEVERITY_LABELS, SeverityClassifier
from ml_models.errors import InferenceError, ModelLoadError, ModelNotReadyError

logger = logging.getLogger(__name__)

WEIGHTS_FILENAME = "severity_classifier.pt"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelHandle:
    """Loaded classifier shared read-only by every request."""

    model: Optional[Callable[[torch.Tensor], torch.Tensor]]
    labels: Tuple[str, ...] = SEVERITY_LABELS
    device: str = "cpu"
    source: str = "<memory>"

    @property
    def is_loaded(self) -> bool:
        return self.model is not None


@dataclass(frozen=True)
class PredictionResult:
    severity_level: int
    label: str
    confidence: float


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_model(model_dir: Union[str, Path], device: str = "cpu") -> ModelHandle:
    """
    Build a SeverityClassifier and load its state dict from
    ``model_dir/severity_classifier.pt``.

    Raises ModelLoadError when the file is missing, unreadable, or does not
    match the architecture.
    """
    weights_file = Path(model_dir) / WEIGHTS_FILENAME
    if not weights_file.is_file():
        raise ModelLoadError(f"Model weights not found at {weights_file}")

    logger.info("Loading severity model from %s (device=%s)", weights_file, device)
    try:
        model = SeverityClassifier()
        state = torch.load(str(weights_file), map_location=device, weights_only=True)
        model.load_state_dict(state)
        model.to(device)
    except Exception as exc:
        raise ModelLoadError(f"Failed to load model weights from {weights_file}: {exc}") from exc

    model.eval()
    model.requires_grad_(False)
    logger.info("Severity model ready (%d classes).", len(SEVERITY_LABELS))
    return ModelHandle(model=model, labels=SEVERITY_LABELS, device=device, source=str(weights_file))


# ---------------------------------------------------------------------------
# Prediction
# ---------------------------------------------------------------------------

def predict(handle: Optional[ModelHandle], tensor: torch.Tensor) -> PredictionResult:
    """
    Run the classifier on a (1, 224, 224, 3) tensor.

    The predicted class is the argmax of the output vector; on an exact tie the
    lowest index wins. Confidence is the winning raw score as produced by the
    model (the classifier already ends in softmax).
    """
    if handle is None or not handle.is_loaded:
        raise ModelNotReadyError("Model is not loaded yet. Please retry later.")

    output = None
    try:
        with torch.inference_mode():
            output = handle.model(tensor.to(handle.device))
        scores = np.asarray(output.detach().cpu().numpy(), dtype=np.float64).reshape(-1)
    except Exception as exc:
        logger.error("Model forward pass failed: %s", exc, exc_info=True)
        raise InferenceError("Failed to analyze image.") from exc
    finally:
        del output
        del tensor

    return _select(scores, handle.labels)


def _select(scores: np.ndarray, labels: Tuple[str, ...]) -> PredictionResult:
    if scores.shape[0] != len(labels):
        raise InferenceError(
            f"Model returned {scores.shape[0]} scores, expected {len(labels)}."
        )
    if not np.all(np.isfinite(scores)):
        raise InferenceError("Model returned non-finite scores.")

    # np.argmax returns the first occurrence of the maximum.
    idx = int(np.argmax(scores))
    # float32 softmax can land a rounding step outside [0, 1].
    confidence = min(max(float(scores[idx]), 0.0), 1.0)
    return PredictionResult(
        severity_level=idx,
        label=labels[idx],
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Bounded worker pool
# ---------------------------------------------------------------------------

class InferenceRunner:
    """
    Runs predict() on a fixed-size thread pool.

    The model call is CPU/accelerator bound, so it never runs on the event loop.
    With the default single worker, predictions are serialised while uploads
    keep streaming in. A prediction that exceeds ``timeout`` seconds is
    reported as InferenceError; nothing is retried.
    """

    def __init__(self, handle: Optional[ModelHandle], max_workers: int = 1, timeout: float = 30.0):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.handle = handle
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="inference"
        )

    @property
    def is_ready(self) -> bool:
        return self.handle is not None and self.handle.is_loaded

    async def run(self, tensor: torch.Tensor) -> PredictionResult:
        if not self.is_ready:
            raise ModelNotReadyError("Model is not loaded yet. Please retry later.")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, predict, self.handle, tensor)
        del tensor
        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Inference timed out after %.1fs", self.timeout)
            raise InferenceError(
                f"Inference did not complete within {self.timeout:g} seconds."
            ) from exc

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __repr__(self) -> str:
        return f"InferenceRunner(ready={self.is_ready}, timeout={self.timeout})"
