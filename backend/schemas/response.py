"""
schemas/response.py
===================
Pydantic v2 models for every JSON body the service returns.

Field names match the wire format used by the frontend (camelCase
`severityLevel`), so models are dumped without aliasing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class AnalyzeResponse(BaseModel):
    severityLevel: int = Field(..., ge=0, le=3)
    label: str                # "Extremely Mild" | "Mild" | "Moderate" | "Severe"
    confidence: float = Field(..., ge=0.0, le=1.0)
    message: str = "Analysis complete!"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    status: str = "OK"
    message: str = "Server is running."
    model_loaded: bool
    labels: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Error response
# ---------------------------------------------------------------------------

class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    timestamp: str = Field(default_factory=_utc_now)
