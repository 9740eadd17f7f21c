"""
config.py
=========
Runtime settings read from the environment (and a project-root .env file,
loaded by main.py before Settings.from_env() is called).

All paths are resolved relative to the current working directory, matching
how the service is started (`python -m backend.main` from the project root).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List

_DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024  # 5 MiB


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    upload_dir: str = "uploads"
    model_dir: str = os.path.join("public", "models")
    dist_dir: str = "dist"
    max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES
    inference_timeout: float = 30.0
    inference_workers: int = 1
    model_device: str = "cpu"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            host              = os.getenv("HOST", "0.0.0.0"),
            port              = _env_int("PORT", 5000),
            cors_origins      = _env_list("CORS_ORIGIN", "*"),
            upload_dir        = os.path.abspath(os.getenv("UPLOAD_DIR", "uploads")),
            model_dir         = os.path.abspath(os.getenv("MODEL_DIR", os.path.join("public", "models"))),
            dist_dir          = os.path.abspath(os.getenv("DIST_DIR", "dist")),
            max_upload_bytes  = _env_int("MAX_UPLOAD_BYTES", _DEFAULT_MAX_UPLOAD_BYTES),
            inference_timeout = _env_float("INFERENCE_TIMEOUT", 30.0),
            inference_workers = _env_int("INFERENCE_WORKERS", 1),
            model_device      = os.getenv("MODEL_DEVICE", "cpu"),
            log_level         = os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.max_upload_bytes <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive")
        if self.inference_timeout <= 0:
            raise ValueError("INFERENCE_TIMEOUT must be positive")
        if self.inference_workers < 1:
            raise ValueError("INFERENCE_WORKERS must be at least 1")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"LOG_LEVEL must be a logging level name, got {self.log_level!r}")
