# lasermark/api/v1/control.py

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from lasermark.api.deps import get_runtime
from lasermark.runtime import CellRuntime
from lasermark.schemas.control import (
    CycleStatus,
    ResetTimeRequest,
    ResetTimeResponse,
    SerialResetRequest,
    SerialResetResponse,
)

router = APIRouter(tags=["control"])


@router.get("/cycle/status", response_model=CycleStatus)
def get_cycle_status(runtime: CellRuntime = Depends(get_runtime)):
    return runtime.status()


# ===== serial number (operator commands, answered on the event stream as well) =====

@router.post("/serial/reset", response_model=SerialResetResponse)
def reset_serial_number(req: SerialResetRequest, runtime: CellRuntime = Depends(get_runtime)):
    """
    Manual serial reset: the next issued serial is exactly `reset_value`.
    Emits `resetComplete`.
    """
    try:
        return runtime.manual_serial_reset(
            req.reset_value,
            initial_value=req.initial_value,
            reset_interval=req.reset_interval,
            updated_by=req.updated_by,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/serial/reset-time", response_model=ResetTimeResponse)
def update_reset_time(req: ResetTimeRequest, runtime: CellRuntime = Depends(get_runtime)):
    """Daily reset time of the serial number and the day id. Emits `resetTimeComplete`."""
    try:
        return runtime.update_reset_time(req.hour, req.minute, updated_by=req.updated_by)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
