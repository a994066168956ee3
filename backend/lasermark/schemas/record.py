# lasermark/schemas/record.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RecordOut(BaseModel):
    id: int
    timestamp: datetime
    serial_number: str = Field(..., description="4-digit serial issued for the part")
    marking_data: str = Field(..., description="barcode text written to code.txt")
    scanner_data: Optional[str] = Field(None, description="second scan reading, N/A until verified")
    result: str = Field(..., description="OK / NG / N/A")
    grade: Optional[str] = None
    current_id: Optional[int] = Field(None, description="day id")
    part_number: Optional[str] = None
    user: Optional[str] = None
    remark: Optional[str] = None

    class Config:
        from_attributes = True
