# lasermark/db/models/config.py

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, func

from lasermark.db.session import Base


class SerialConfig(Base):
    """Serial number configuration (first row wins)."""
    __tablename__ = "serial_configs"

    id = Column(Integer, primary_key=True, index=True)
    initial_value = Column(Integer, nullable=False, default=1)
    reset_value = Column(Integer, nullable=False, default=0)
    reset_time = Column(String(5), nullable=False, default="06:00")  # HH:MM
    reset_interval = Column(String(16), nullable=False, default="daily")

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    updated_by = Column(String(64), nullable=True)


class GradeConfig(Base):
    """Lowest acceptable scan grade, e.g. "B" accepts A and B."""
    __tablename__ = "grade_configs"

    id = Column(Integer, primary_key=True, index=True)
    grade = Column(String(1), nullable=False)


class ShiftConfig(Base):
    __tablename__ = "shift_configs"

    id = Column(Integer, primary_key=True, index=True)
    shift = Column(String(16), nullable=False)
    start = Column(String(5), nullable=False)  # HH:MM
    end = Column(String(5), nullable=True)     # None -> next shift's start
    position = Column(Integer, nullable=False, default=0)


class PartConfig(Base):
    """
    Part number with its barcode field template.
    fields: [{"fieldName": "Year", "order": 1, "isChecked": true, "value": ""}, ...]
    """
    __tablename__ = "part_configs"

    id = Column(Integer, primary_key=True, index=True)
    part_no = Column(String(64), nullable=False)
    fields = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
