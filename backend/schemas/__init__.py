# backend/schemas/__init__.py
from backend.schemas.response import (
    AnalyzeResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "AnalyzeResponse", "ErrorResponse", "HealthResponse",
]
