# lasermark/services/records_service.py

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lasermark.core.errors import TransportError
from lasermark.db.models import GradeConfig, PartConfig, Record, SerialConfig, ShiftConfig
from lasermark.services.barcode import BarcodeField
from lasermark.services.grading import AcceptablePolicy, ScanOutcome
from lasermark.services.serial_number import LatestRecord
from lasermark.services.shift import Shift, ShiftTable

logger = logging.getLogger(__name__)

RECORD_FIELDS = (
    "timestamp",
    "serial_number",
    "marking_data",
    "scanner_data",
    "result",
    "grade",
    "current_id",
    "part_number",
    "user",
    "remark",
)


def normalize_result(result: Any) -> str:
    if result == ScanOutcome.NA:
        return ScanOutcome.NA.value
    if result is True or result == ScanOutcome.OK:
        return ScanOutcome.OK.value
    return ScanOutcome.NG.value


def _clean(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in payload.items() if k in RECORD_FIELDS}
    if "result" in data:
        data["result"] = normalize_result(data["result"])
    if data.get("grade"):
        data["grade"] = str(data["grade"]).upper()
    return data


# ========== records ==========

def get_latest_record(db: Session) -> Optional[Record]:
    stmt = select(Record).order_by(desc(Record.timestamp), desc(Record.id)).limit(1)
    return db.scalars(stmt).first()


def list_recent_records(db: Session, limit: int = 50) -> List[Record]:
    stmt = select(Record).order_by(desc(Record.timestamp), desc(Record.id)).limit(limit)
    return list(db.scalars(stmt))


def _find_last_by_serial(db: Session, serial_number: str) -> Optional[Record]:
    stmt = (
        select(Record)
        .where(Record.serial_number == serial_number)
        .order_by(desc(Record.timestamp), desc(Record.id))
        .limit(1)
    )
    return db.scalars(stmt).first()


def insert_record(db: Session, payload: Dict[str, Any]) -> Record:
    data = _clean(payload)
    data.setdefault("timestamp", datetime.now())
    data.setdefault("remark", "")
    record = Record(**data)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def update_last_record(db: Session, serial_number: str, patch: Dict[str, Any]) -> Record:
    """
    Update the most recent record for `serial_number`.
    Falls back to inserting when the cycle never got to insert its row.
    """
    record = _find_last_by_serial(db, serial_number)
    data = _clean(patch)
    if record is None:
        logger.warning("no record for serial %s, inserting instead of updating", serial_number)
        data["serial_number"] = serial_number
        data.setdefault("marking_data", "")
        data.setdefault("result", "N/A")
        return insert_record(db, data)

    for key, value in data.items():
        if key == "serial_number":
            continue
        setattr(record, key, value)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


# ========== configuration documents ==========

def get_serial_config(db: Session) -> Optional[SerialConfig]:
    return db.scalars(select(SerialConfig).order_by(SerialConfig.id).limit(1)).first()


def save_serial_config(db: Session, updated_by: Optional[str] = None, **fields: Any) -> SerialConfig:
    """Update the serial configuration row, creating it on first use. None values are left untouched."""
    cfg = get_serial_config(db) or SerialConfig()
    for key, value in fields.items():
        if value is not None:
            setattr(cfg, key, value)
    cfg.updated_at = datetime.now()
    cfg.updated_by = updated_by
    db.add(cfg)
    db.commit()
    db.refresh(cfg)
    return cfg


def get_grade_cutoff(db: Session) -> Optional[str]:
    return db.execute(select(GradeConfig.grade).order_by(GradeConfig.id).limit(1)).scalar_one_or_none()


def get_shift_rows(db: Session) -> List[ShiftConfig]:
    return list(db.scalars(select(ShiftConfig).order_by(ShiftConfig.position, ShiftConfig.id)))


def get_active_part(db: Session) -> Optional[PartConfig]:
    stmt = (
        select(PartConfig)
        .where(PartConfig.is_active.is_(True))
        .order_by(desc(PartConfig.id))
        .limit(1)
    )
    return db.scalars(stmt).first()


class RecordStore:
    """Persistence boundary used by the cycle: one short session per call."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        default_grade_cutoff: str = "B",
    ) -> None:
        self._session_factory = session_factory
        self.default_grade_cutoff = default_grade_cutoff

    def _session(self) -> Session:
        return self._session_factory()

    def ping(self) -> None:
        db = self._session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    def connect_with_retry(
        self,
        attempts: int = 5,
        delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        for attempt in range(1, attempts + 1):
            try:
                self.ping()
                logger.info("database connected")
                return
            except SQLAlchemyError as e:
                logger.error("database connection attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    sleep(delay)
        raise TransportError(f"database unreachable after {attempts} attempts")

    def get_latest_record(self) -> Optional[LatestRecord]:
        db = self._session()
        try:
            record = get_latest_record(db)
            if record is None:
                return None
            return LatestRecord(serial=record.serial_number, timestamp=record.timestamp)
        finally:
            db.close()

    def insert(self, payload: Dict[str, Any]) -> int:
        db = self._session()
        try:
            record = insert_record(db, payload)
            logger.info("record saved serial=%s result=%s day_id=%s",
                        record.serial_number, record.result, record.current_id)
            return record.id
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def update_last_matching(self, serial_number: str, patch: Dict[str, Any]) -> int:
        db = self._session()
        try:
            record = update_last_record(db, serial_number, patch)
            logger.info("record updated serial=%s result=%s", serial_number, record.result)
            return record.id
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def list_recent(self, limit: int = 50) -> List[Record]:
        db = self._session()
        try:
            return list_recent_records(db, limit=limit)
        finally:
            db.close()

    def get_shift_table(self) -> ShiftTable:
        db = self._session()
        try:
            rows = get_shift_rows(db)
        finally:
            db.close()
        if not rows:
            return ShiftTable()
        if all(r.end for r in rows):
            return ShiftTable([Shift(r.shift, r.start, r.end) for r in rows])
        return ShiftTable.from_mapping({r.shift: r.start for r in rows})

    def get_grade_policy(self) -> AcceptablePolicy:
        db = self._session()
        try:
            cutoff = get_grade_cutoff(db)
        finally:
            db.close()
        return AcceptablePolicy.from_cutoff(cutoff or self.default_grade_cutoff)

    def get_active_field_template(self) -> List[BarcodeField]:
        db = self._session()
        try:
            part = get_active_part(db)
            raw = list(part.fields or []) if part else []
        finally:
            db.close()
        if not raw:
            logger.warning("no active part configuration, barcode template is empty")
        return [BarcodeField.from_dict(f) for f in raw]

    def get_part_number(self) -> str:
        db = self._session()
        try:
            part = get_active_part(db)
            return part.part_no if part else "Unknown Part No"
        finally:
            db.close()

    def get_serial_config(self) -> Dict[str, Any]:
        db = self._session()
        try:
            cfg = get_serial_config(db)
            if cfg is None:
                return {}
            return {
                "initial_value": cfg.initial_value,
                "reset_value": cfg.reset_value,
                "reset_time": cfg.reset_time,
                "reset_interval": cfg.reset_interval,
            }
        finally:
            db.close()

    def save_serial_config(self, updated_by: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        db = self._session()
        try:
            save_serial_config(db, updated_by=updated_by, **fields)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
        return self.get_serial_config()

    def close(self) -> None:
        bind = getattr(self._session_factory, "kw", {}).get("bind")
        if bind is not None:
            bind.dispose()
        logger.info("database connection closed")
