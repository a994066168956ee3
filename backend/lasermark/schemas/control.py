# lasermark/schemas/control.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SerialResetRequest(BaseModel):
    reset_value: int = Field(..., ge=0, lt=9999, description="next serial to issue")
    initial_value: Optional[int] = Field(None, ge=0, lt=9999, description="value used after daily reset / wraparound")
    reset_interval: Optional[str] = Field(None, pattern="^(daily|none)$")
    updated_by: Optional[str] = None


class SerialResetResponse(BaseModel):
    success: bool = True
    current_value: int
    reset_time: datetime
    reset_value: int
    initial_value: Optional[int] = None
    reset_interval: Optional[str] = None


class ResetTimeRequest(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    updated_by: Optional[str] = None


class ResetTimeResponse(BaseModel):
    success: bool = True
    hour: int
    minute: int
    message: str


class CycleStatus(BaseModel):
    running: bool
    cycle_count: int
    state: Optional[str] = None
    sequence: Optional[int] = None
    serial: Optional[str] = None
    barcode_text: Optional[str] = None
    last_outcome: Optional[str] = None
    current_serial: Optional[str] = None
    part_number: Optional[str] = None
