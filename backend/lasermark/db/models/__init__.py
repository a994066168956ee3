# lasermark/db/models/__init__.py

from lasermark.db.session import Base  # noqa: F401

from lasermark.db.models.record import Record  # noqa: F401
from lasermark.db.models.config import (  # noqa: F401
    GradeConfig,
    PartConfig,
    SerialConfig,
    ShiftConfig,
)
