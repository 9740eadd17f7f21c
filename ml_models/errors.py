"""
errors.py
=========
Failure kinds raised by the model side of the analysis pipeline.

The HTTP layer (backend/errors.py) maps each of these to a status code; nothing
in ml_models knows about HTTP.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every expected failure of an analysis request."""

    kind = "PipelineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(PipelineError):
    """Uploaded bytes could not be decoded as an image."""

    kind = "DecodeError"


class ModelNotReadyError(PipelineError):
    """The model handle is absent or not loaded; the client should retry later."""

    kind = "ModelNotReadyError"


class InferenceError(PipelineError):
    """Prediction failed unexpectedly or did not finish in time."""

    kind = "InferenceError"


class ModelLoadError(RuntimeError):
    """The model artifact is missing or unusable. Fatal at startup."""
