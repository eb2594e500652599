"""
Swap Cycles Router - Endpoints for detecting and running swap cycles.

This router handles:
- Manual detection runs (shares the scheduler's running flag)
- The acting user's cycle list and cycle details
- Participant actions: confirm, drop-off, collect, cancel, condition report

The acting user comes from the ``X-User-Id`` header; authentication is
done upstream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Body, Header, Path, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from swapping.errors import JobAlreadyRunningError
from swapping.models import ActionResult, CycleStatus

from ..dependencies import get_scheduler, get_state_machine
from ..schemas import (
    ActionResponse,
    CancelCycleRequest,
    CollectBookRequest,
    ConditionReportRequest,
    DetectCyclesRequest,
    DropOffRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cycles", tags=["swap-cycles"])

ERROR_STATUS_CODES = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "invalid_transition": 409,
    "busy": 409,
    "internal": 500,
}

UserId = Annotated[str, Header(alias="X-User-Id", description="Acting user's id")]
CycleId = Annotated[str, Path(description="Swap cycle id")]


def to_response(result: ActionResult) -> JSONResponse:
    """Render an engine result; failures carry only success and message."""
    if result.success:
        content = {"success": True, "message": result.message, "data": result.data}
        return JSONResponse(status_code=200, content=jsonable_encoder(content))
    status_code = ERROR_STATUS_CODES.get(result.error or "internal", 500)
    return JSONResponse(status_code=status_code, content={"success": False, "message": result.message})


# ========================================
# Detection
# ========================================


@router.post("/detect", response_model=ActionResponse)
async def detect_cycles(
    user_id: UserId,
    body: Annotated[DetectCyclesRequest | None, Body()] = None,
) -> JSONResponse:
    """Run cycle detection now and save the best cycles.

    Returns 409 while a scheduled or manual run is still in progress.
    """
    params = body or DetectCyclesRequest()
    logger.info(f"Manual cycle detection requested by {user_id} (max size {params.max_cycle_size})")
    scheduler = get_scheduler()
    try:
        saved = await asyncio.to_thread(scheduler.trigger_detection, params.max_cycle_size, params.top_n)
    except JobAlreadyRunningError as e:
        return to_response(ActionResult.fail(str(e), error=e.error_kind))
    except Exception as e:
        logger.error(f"Cycle detection failed: {e}", exc_info=True)
        return to_response(ActionResult.fail("Failed to detect cycles", error="internal"))

    return to_response(
        ActionResult.ok(
            f"Successfully detected and saved {saved} swap cycles",
            cycles_detected=saved,
            max_cycle_size=params.max_cycle_size,
        )
    )


# ========================================
# Health
# ========================================


@router.get("/health")
async def cycles_health() -> dict[str, object]:
    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "service": "swap-cycles",
        "detection_running": scheduler.detection_job.is_running,
        "timeout_sweep_running": scheduler.timeout_job.is_running,
    }


# ========================================
# Read models
# ========================================


@router.get("", response_model=ActionResponse)
@router.get("/", response_model=ActionResponse, include_in_schema=False)
async def list_my_cycles(
    user_id: UserId,
    status: Annotated[str | None, Query(description="Filter by cycle status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> JSONResponse:
    """Cycles the user takes part in, newest first"""
    cycle_status = None
    if status:
        try:
            cycle_status = CycleStatus(status)
        except ValueError:
            return to_response(ActionResult.fail(f"Invalid status: {status}"))

    result = await asyncio.to_thread(get_state_machine().list_user_cycles, user_id, cycle_status, limit)
    return to_response(result)


@router.get("/{cycle_id}", response_model=ActionResponse)
async def get_cycle(cycle_id: CycleId, user_id: UserId) -> JSONResponse:
    result = await asyncio.to_thread(get_state_machine().get_cycle_view, cycle_id, user_id)
    return to_response(result)


# ========================================
# Participant actions
# ========================================


@router.post("/{cycle_id}/confirm", response_model=ActionResponse)
async def confirm_cycle(cycle_id: CycleId, user_id: UserId) -> JSONResponse:
    result = await asyncio.to_thread(get_state_machine().confirm, cycle_id, user_id)
    return to_response(result)


@router.post("/{cycle_id}/drop-off", response_model=ActionResponse)
async def drop_off_book(
    cycle_id: CycleId,
    user_id: UserId,
    body: Annotated[DropOffRequest | None, Body()] = None,
) -> JSONResponse:
    photo_url = body.verification_photo_url if body else None
    result = await asyncio.to_thread(get_state_machine().drop_off, cycle_id, user_id, photo_url)
    return to_response(result)


@router.post("/{cycle_id}/collect", response_model=ActionResponse)
async def collect_book(cycle_id: CycleId, user_id: UserId, body: CollectBookRequest) -> JSONResponse:
    result = await asyncio.to_thread(
        get_state_machine().collect, cycle_id, user_id, body.qr_code, body.verification_photo_url
    )
    return to_response(result)


@router.post("/{cycle_id}/cancel", response_model=ActionResponse)
async def cancel_cycle(cycle_id: CycleId, user_id: UserId, body: CancelCycleRequest) -> JSONResponse:
    result = await asyncio.to_thread(get_state_machine().cancel, cycle_id, user_id, body.reason)
    return to_response(result)


@router.post("/{cycle_id}/condition-report", response_model=ActionResponse)
async def report_condition(cycle_id: CycleId, user_id: UserId, body: ConditionReportRequest) -> JSONResponse:
    result = await asyncio.to_thread(
        get_state_machine().report_condition,
        cycle_id,
        user_id,
        body.expected_condition,
        body.actual_condition,
        body.notes,
    )
    return to_response(result)
