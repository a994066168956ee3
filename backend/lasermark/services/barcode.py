# lasermark/services/barcode.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from lasermark.services.serial_number import SerialNumberService
from lasermark.services.shift import ShiftTable

logger = logging.getLogger(__name__)

YEAR = "Year"
MONTH = "Month"
DATE = "Date"
JULIAN_DATE = "Julian Date"
SERIAL_NUMBER = "Serial Number"
SHIFT = "Shift"
MODEL_NUMBER = "Model Number"  # shown on the HMI, never marked


@dataclass(frozen=True)
class BarcodeField:
    field_name: str
    order: int
    is_checked: bool = True
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BarcodeField":
        # template documents are camelCase
        name = data.get("fieldName", data.get("field_name"))
        if name is None:
            raise ValueError(f"template field without a name: {data}")
        checked = data.get("isChecked", data.get("is_checked", False))
        value = data.get("value")
        return cls(
            field_name=str(name),
            order=int(data.get("order", 0)),
            is_checked=bool(checked),
            value=None if value is None else str(value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "order": self.order,
            "isChecked": self.is_checked,
            "value": self.value,
        }


@dataclass
class BarcodeData:
    text: str
    serial: str
    fields: List[BarcodeField] = field(default_factory=list)


def date_values(now: datetime) -> Dict[str, str]:
    return {
        YEAR: now.strftime("%y"),
        MONTH: now.strftime("%m"),
        DATE: now.strftime("%d"),
        JULIAN_DATE: str(now.timetuple().tm_yday).zfill(3),
    }


def render_barcode(
    fields: Sequence[BarcodeField],
    *,
    now: datetime,
    shift: str,
    serial: str,
) -> BarcodeData:
    """Fill the named slots of the template and join the checked fields.

    Fields are joined in ascending `order`; equal orders keep template order.
    Unset values render as "".
    """
    values = date_values(now)
    values[SHIFT] = shift
    values[SERIAL_NUMBER] = serial

    filled = [
        replace(f, value=values[f.field_name]) if f.field_name in values else f
        for f in fields
    ]
    marked = sorted(
        (f for f in filled if f.is_checked and f.field_name != MODEL_NUMBER),
        key=lambda f: f.order,
    )
    text = "".join(f.value or "" for f in marked)
    return BarcodeData(text=text, serial=serial, fields=filled)


def serial_file_text(now: datetime, serial: str) -> str:
    """Date-prefixed serial for text.txt: ddMMyyXX<serial>."""
    return f"{now.strftime('%d%m%y')}XX{serial}"


class BarcodeGenerator:
    def __init__(
        self,
        serial_numbers: SerialNumberService,
        template: Callable[[], Sequence[BarcodeField]],
        shift_table: Callable[[], ShiftTable] = ShiftTable,
    ) -> None:
        self.serial_numbers = serial_numbers
        self._template = template
        self._shift_table = shift_table

    def generate(self, now: Optional[datetime] = None) -> BarcodeData:
        now = now or datetime.now()
        fields = list(self._template())
        shift = self._shift_table().current_shift(now)
        serial = self.serial_numbers.next_serial()
        data = render_barcode(fields, now=now, shift=shift, serial=serial)
        logger.info("barcode generated text=%s serial=%s shift=%s", data.text, serial, shift)
        return data
