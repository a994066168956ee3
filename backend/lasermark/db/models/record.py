# lasermark/db/models/record.py

from sqlalchemy import Column, DateTime, Integer, String

from lasermark.db.session import Base


class Record(Base):
    """
    One marked part.
    - inserted with result "N/A" once the hand-off files are written
    - updated (never duplicated) with the verification result
    """
    __tablename__ = "records"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, index=True, nullable=False)

    serial_number = Column(String(8), index=True, nullable=False)
    marking_data = Column(String(64), nullable=False)
    scanner_data = Column(String(64), nullable=True)

    result = Column(String(8), nullable=False)  # OK / NG / N/A
    grade = Column(String(8), nullable=True)

    current_id = Column(Integer, nullable=True)  # day id
    part_number = Column(String(64), nullable=True)
    user = Column(String(64), nullable=True)
    remark = Column(String(255), nullable=True, default="")
