"""
Fixtures and fakes for the cell controller tests.

Hardware is replaced at the transport boundary: a fake pymodbus client behind
the real RegisterGateway, and a scripted scanner. The database is in-memory
SQLite.
"""
import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from lasermark.cycle.context import CycleTimings
from lasermark.db.models import GradeConfig, PartConfig
from lasermark.db.session import Base, make_engine
from lasermark.monitor.reset_monitor import ResetSignal
from lasermark.plc.gateway import RegisterGateway
from lasermark.services.day_id import DayIdCounter
from lasermark.services.records_service import RecordStore
from lasermark.services.serial_number import SerialNumberService

FIXED_NOW = datetime(2024, 6, 15, 10, 0, 0)

TEMPLATE = [
    {"fieldName": "Model Number", "order": 0, "isChecked": False, "value": "LM-100"},
    {"fieldName": "Year", "order": 1, "isChecked": True},
    {"fieldName": "Month", "order": 2, "isChecked": True},
    {"fieldName": "Date", "order": 3, "isChecked": True},
    {"fieldName": "Plant", "order": 4, "isChecked": True, "value": "XX"},
    {"fieldName": "Serial Number", "order": 5, "isChecked": True},
]


class FakeResponse:
    def __init__(self, registers: Optional[List[int]] = None, error: bool = False) -> None:
        self.registers = registers or []
        self._error = error

    def isError(self) -> bool:
        return self._error


class FakeModbusClient:
    """In-memory holding registers with the pymodbus async client surface."""

    def __init__(self, registers: Optional[Dict[int, int]] = None) -> None:
        self.registers: Dict[int, int] = dict(registers or {})
        self.connected = False
        self.connect_ok = True
        self.fail_reads = False
        self.error_responses = False
        self.write_delay = 0.0
        self.fail_writes_to: Set[int] = set()
        self.writes: List[Tuple[int, int]] = []
        self.on_write: Optional[Callable[[int, int], None]] = None

    async def connect(self) -> bool:
        self.connected = self.connect_ok
        return self.connect_ok

    def close(self) -> None:
        self.connected = False

    async def read_holding_registers(self, address: int, count: int = 1) -> FakeResponse:
        if self.fail_reads:
            raise ConnectionResetError("link down")
        if self.error_responses:
            return FakeResponse(error=True)
        return FakeResponse([self.registers.get(address + i, 0) for i in range(count)])

    async def write_register(self, address: int, value: int) -> FakeResponse:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if address in self.fail_writes_to:
            raise ConnectionResetError("plc link dropped")
        if self.error_responses:
            return FakeResponse(error=True)
        self.registers[address] = value
        self.writes.append((address, value))
        if self.on_write is not None:
            self.on_write(address, value)
        return FakeResponse()

    def bit(self, register: int, bit: int) -> bool:
        return bool((self.registers.get(register, 0) >> bit) & 1)

    def set_bit(self, register: int, bit: int) -> None:
        self.registers[register] = self.registers.get(register, 0) | (1 << bit)


class FakeScanner:
    """Hands out scripted readings; records how it was called."""

    def __init__(self, readings: Optional[List[str]] = None) -> None:
        self.readings = list(readings or [])
        self.calls: List[bool] = []
        self.closed = False

    async def connect(self, host: str, port: int) -> None:
        self.host, self.port = host, port

    async def get_reading(self, expect_second_line: bool = False) -> str:
        self.calls.append(expect_second_line)
        if not self.readings:
            raise AssertionError("scanner script exhausted")
        return self.readings.pop(0)

    async def close(self) -> None:
        self.closed = True


class RecordingBus:
    def __init__(self) -> None:
        self.events: List[Tuple[str, dict]] = []

    def emit(self, event_type: str, data: Optional[dict] = None) -> dict:
        self.events.append((event_type, data or {}))
        return {"type": event_type, "data": data or {}}

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded_factory(session_factory):
    db = session_factory()
    db.add(PartConfig(part_no="LM-100", fields=TEMPLATE, is_active=True))
    db.add(GradeConfig(grade="B"))
    db.commit()
    db.close()
    return session_factory


@pytest.fixture
def store(seeded_factory) -> RecordStore:
    return RecordStore(seeded_factory, default_grade_cutoff="B")


@pytest.fixture
def modbus_client() -> FakeModbusClient:
    return FakeModbusClient()


@pytest.fixture
def gateway(modbus_client) -> RegisterGateway:
    gw = RegisterGateway("plc.test", client=modbus_client, write_timeout=0.5)
    modbus_client.connected = True
    return gw


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def reset_signal() -> ResetSignal:
    return ResetSignal()


@pytest.fixture
def fast_timings() -> CycleTimings:
    return CycleTimings(
        plc_wait_timeout=1.0,
        plc_poll_interval=0.001,
        cycle_gap=0,
        error_cooldown=0,
        reset_settle=0,
        abort_settle=0,
        second_scan_retry_delay=0,
        image_wait=0,
        final_settle=0,
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def serial_numbers(fixed_clock) -> SerialNumberService:
    return SerialNumberService.from_config(
        initial=7,
        reset_time="06:00",
        reset_interval="daily",
        latest=None,
        clock=fixed_clock,
    )


@pytest.fixture
def day_ids(fixed_clock) -> DayIdCounter:
    return DayIdCounter(6, 0, clock=fixed_clock)
