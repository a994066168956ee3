# lasermark/api/deps.py

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from lasermark.db.session import SessionLocal
from lasermark.runtime import CellRuntime


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_runtime(request: Request) -> CellRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Cell runtime not available")
    return runtime
