"""
Pytest fixtures for testing.
"""

import dataclasses
import io
import os
import tempfile
import time
from pathlib import Path

import pytest
import torch
import torch.nn as nn
from PIL import Image

# Set test environment variables before importing the app, so the module-level
# app in backend.main never stages into the working tree.
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="severityscan-uploads-")
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient

from backend.config import Settings
from backend.main import create_app
from ml_models.architecture import SeverityClassifier
from ml_models.predictor import WEIGHTS_FILENAME, ModelHandle


# ============================================================================
# Stub models
# ============================================================================

class FixedScores(nn.Module):
    """Returns the same score vector for every input."""

    def __init__(self, scores):
        super().__init__()
        self.scores = torch.tensor([scores], dtype=torch.float32)

    def forward(self, x):
        return self.scores.expand(x.shape[0], -1)


class SlowModel(nn.Module):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def forward(self, x):
        time.sleep(self.delay)
        return torch.tensor([[0.25, 0.25, 0.25, 0.25]])


class BrokenModel(nn.Module):
    def forward(self, x):
        raise RuntimeError("CUDA out of memory")


# ============================================================================
# Images
# ============================================================================

def encode_image(mode="RGB", size=(224, 224), color=(0, 0, 0), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def black_png():
    """A 224×224 all-black PNG."""
    return encode_image()


@pytest.fixture
def sample_jpeg():
    return encode_image(size=(640, 480), color=(73, 109, 137), fmt="JPEG")


# ============================================================================
# Settings / model artifacts
# ============================================================================

@pytest.fixture
def upload_dir(tmp_path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path, upload_dir) -> Settings:
    return Settings(
        upload_dir        = str(upload_dir),
        model_dir         = str(tmp_path / "models"),
        dist_dir          = str(tmp_path / "dist"),
        inference_timeout = 10.0,
    )


@pytest.fixture
def weights_dir(tmp_path) -> Path:
    """A model directory holding a deterministic SeverityClassifier state dict."""
    model_dir = tmp_path / "models"
    model_dir.mkdir(exist_ok=True)
    torch.manual_seed(0)
    torch.save(SeverityClassifier().state_dict(), str(model_dir / WEIGHTS_FILENAME))
    return model_dir


# ============================================================================
# Clients
# ============================================================================

@pytest.fixture
def make_client(settings):
    """
    Build a started TestClient around a given model.

    `model` may be an nn.Module (wrapped in a ModelHandle) or None to use the
    real loader against settings.model_dir.
    """
    clients = []

    def _make(model=None, **overrides):
        cfg = dataclasses.replace(settings, **overrides)
        if model is None:
            app = create_app(cfg)
        else:
            app = create_app(cfg, model_loader=lambda _s: ModelHandle(model=model))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client(FixedScores([0.1, 0.2, 0.6, 0.1]))
