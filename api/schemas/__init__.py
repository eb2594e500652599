"""
Pydantic schemas for the swap API.

Re-exports all schemas for convenient importing.
"""

from __future__ import annotations

from .cycles import (
    ActionResponse,
    CancelCycleRequest,
    CollectBookRequest,
    ConditionReportRequest,
    DetectCyclesRequest,
    DropOffRequest,
)

__all__ = [
    "ActionResponse",
    "CancelCycleRequest",
    "CollectBookRequest",
    "ConditionReportRequest",
    "DetectCyclesRequest",
    "DropOffRequest",
]
