# lasermark/api/v1/records.py

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lasermark.api.deps import get_db
from lasermark.schemas.record import RecordOut
from lasermark.services import records_service

router = APIRouter(prefix="/records", tags=["records"])


@router.get("/latest", response_model=List[RecordOut])
def get_latest_records(
    limit: int = Query(50, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Most recent records first."""
    return records_service.list_recent_records(db, limit=limit)
