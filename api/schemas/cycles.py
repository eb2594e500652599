"""
Pydantic schemas for swap cycle endpoints.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class DetectCyclesRequest(BaseModel):
    """Manual detection run parameters"""

    max_cycle_size: int = Field(default=5, ge=2, le=5)
    top_n: int = Field(default=50, ge=1)


class DropOffRequest(BaseModel):
    verification_photo_url: str | None = None


class CollectBookRequest(BaseModel):
    """Collection at the drop point; the QR token is checked by the engine"""

    qr_code: str | None = None
    verification_photo_url: str | None = None


class CancelCycleRequest(BaseModel):
    reason: str | None = None


class ConditionReportRequest(BaseModel):
    """Condition of the received book versus what the listing promised"""

    expected_condition: str
    actual_condition: str
    notes: str | None = None


class ActionResponse(BaseModel):
    """Envelope returned by every cycle endpoint"""

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
