# lasermark/runtime.py

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from lasermark.core.config import Settings
from lasermark.cycle.context import CycleTimings
from lasermark.cycle.orchestrator import ScanCycleOrchestrator
from lasermark.db.session import Base, SessionLocal, engine as default_engine
from lasermark.db import models  # noqa: F401
from lasermark.monitor.alarm_monitor import AlarmMonitor
from lasermark.monitor.reset_monitor import ResetMonitor, ResetSignal
from lasermark.monitor.supervisor import supervise
from lasermark.plc import registers
from lasermark.plc.gateway import RegisterGateway
from lasermark.scanner.client import ScannerClient
from lasermark.services.barcode import BarcodeGenerator
from lasermark.services.day_id import DayIdCounter
from lasermark.services.image_archive import ImageArchive
from lasermark.services.marking_files import MarkingFiles
from lasermark.services.records_service import RecordStore
from lasermark.services.serial_number import SerialNumberService, format_serial
from lasermark.ws.bus import EventBus

logger = logging.getLogger(__name__)


class CellRuntime:
    """
    Builds the cell from settings and owns its background tasks:
    the scan cycle loop, the reset poller and one alarm poller per rule.
    """

    def __init__(
        self,
        settings: Settings,
        events: EventBus,
        *,
        session_factory: sessionmaker = SessionLocal,
        engine: Engine = default_engine,
        gateway: Optional[Any] = None,
        scanner: Optional[Any] = None,
    ) -> None:
        self.settings = settings
        self.events = events
        self.engine = engine
        self.store = RecordStore(session_factory, default_grade_cutoff=settings.GRADE_CUTOFF_DEFAULT)
        self.gateway = gateway or RegisterGateway(
            settings.MODBUS_HOST,
            settings.MODBUS_PORT,
            timeout=settings.MODBUS_TIMEOUT,
            write_timeout=settings.PLC_WRITE_TIMEOUT,
        )
        self.scanner = scanner or ScannerClient(
            audit_path=settings.SCANNER_AUDIT_CSV,
            read_timeout=settings.SCANNER_READ_TIMEOUT,
        )
        self.reset_signal = ResetSignal()
        self.day_ids = DayIdCounter(settings.BARCODE_RESET_HOUR, settings.BARCODE_RESET_MINUTE)
        self.serial_numbers: Optional[SerialNumberService] = None
        self.orchestrator: Optional[ScanCycleOrchestrator] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def started(self) -> bool:
        return self.orchestrator is not None

    # ========== startup ==========

    async def start(self, *, run_cycles: bool = True) -> None:
        """Connect everything and start the background tasks. Transport failures here are fatal."""
        s = self.settings
        await asyncio.to_thread(
            self.store.connect_with_retry,
            attempts=s.DB_CONNECT_ATTEMPTS,
            delay=s.DB_CONNECT_DELAY,
        )
        Base.metadata.create_all(bind=self.engine)

        self.serial_numbers = self._load_serial_numbers()
        await self.gateway.connect()
        await self.scanner.connect(s.SCANNER_HOST, s.SCANNER_PORT)

        self.orchestrator = self._build_orchestrator()
        self._start_monitors()
        if run_cycles:
            self._tasks.append(asyncio.create_task(self.orchestrator.run_forever(), name="scan-cycle"))
        logger.info("cell runtime started (part %s)", self.orchestrator.part_number)

    def _load_serial_numbers(self) -> SerialNumberService:
        s = self.settings
        config = self.store.get_serial_config()
        initial = config.get("initial_value")
        if initial is None:
            initial = s.SERIAL_INITIAL_VALUE
        reset_time = config.get("reset_time") or f"{s.BARCODE_RESET_HOUR:02d}:{s.BARCODE_RESET_MINUTE:02d}"
        service = SerialNumberService.from_config(
            initial=initial,
            reset_time=reset_time,
            reset_interval=config.get("reset_interval") or s.SERIAL_RESET_INTERVAL,
            latest=self.store.get_latest_record(),
            latest_record=self.store.get_latest_record,
        )
        self.day_ids.set_reset_time(service.counter.reset_hour, service.counter.reset_minute)
        logger.info("serial number service ready, next serial %s", service.current)
        return service

    def _build_orchestrator(self) -> ScanCycleOrchestrator:
        s = self.settings
        barcodes = BarcodeGenerator(
            self.serial_numbers,
            template=self.store.get_active_field_template,
            shift_table=self.store.get_shift_table,
        )
        return ScanCycleOrchestrator(
            gateway=self.gateway,
            scanner=self.scanner,
            serial_numbers=self.serial_numbers,
            barcodes=barcodes,
            store=self.store,
            marking_files=MarkingFiles(s.CODE_FILE_PATH, s.TEXT_FILE_PATH),
            image_archive=ImageArchive(s.IMAGE_DIR, s.IMAGE_BACKUP_DIR),
            events=self.events,
            reset_signal=self.reset_signal,
            day_ids=self.day_ids,
            timings=CycleTimings.from_settings(s),
            part_number=self.store.get_part_number,
            operator=s.OPERATOR_NAME,
        )

    def _start_monitors(self) -> None:
        s = self.settings
        reset_monitor = ResetMonitor(
            self.gateway,
            self.reset_signal,
            self.events,
            interval=s.RESET_POLL_INTERVAL,
        )
        self._tasks.append(asyncio.create_task(
            supervise("reset monitor", reset_monitor.run, restart_delay=s.MONITOR_RESTART_DELAY),
            name="reset-monitor",
        ))
        for rule in registers.ALARM_RULES:
            monitor = AlarmMonitor(self.gateway, rule, self.events, interval=s.ALARM_POLL_INTERVAL)
            self._tasks.append(asyncio.create_task(
                supervise(f"alarm monitor {rule.register}", monitor.run, restart_delay=s.MONITOR_RESTART_DELAY),
                name=f"alarm-monitor-{rule.register}",
            ))

    # ========== operator commands ==========

    def _require_started(self) -> SerialNumberService:
        if self.serial_numbers is None:
            raise RuntimeError("cell runtime is not started")
        return self.serial_numbers

    def manual_serial_reset(
        self,
        reset_value: int,
        *,
        initial_value: Optional[int] = None,
        reset_interval: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        serial_numbers = self._require_started()
        try:
            current, reset_at = serial_numbers.manual_reset(reset_value)
        except ValueError as e:
            logger.error("error during manual reset: %s", e)
            self.events.emit("resetComplete", {"success": False, "error": str(e)})
            raise

        if initial_value is not None:
            serial_numbers.counter.initial = initial_value
        if reset_interval is not None:
            serial_numbers.counter.reset_interval = reset_interval
        self.store.save_serial_config(
            updated_by=updated_by,
            reset_value=reset_value,
            initial_value=initial_value,
            reset_interval=reset_interval,
        )

        payload = {
            "success": True,
            "current_value": current,
            "reset_time": reset_at,
            "reset_value": reset_value,
            "initial_value": initial_value,
            "reset_interval": reset_interval,
        }
        self.events.emit("resetComplete", {**payload, "reset_time": reset_at.isoformat()})
        logger.info("serial number reset to %s", format_serial(current))
        return payload

    def update_reset_time(self, hour: int, minute: int, *, updated_by: Optional[str] = None) -> Dict[str, Any]:
        serial_numbers = self._require_started()
        try:
            serial_numbers.set_reset_time(hour, minute)
        except ValueError as e:
            logger.error("error updating reset time: %s", e)
            self.events.emit("resetTimeComplete", {"success": False, "error": str(e)})
            raise

        self.day_ids.set_reset_time(hour, minute)
        self.store.save_serial_config(updated_by=updated_by, reset_time=f"{hour:02d}:{minute:02d}")

        payload = {
            "success": True,
            "hour": hour,
            "minute": minute,
            "message": f"Reset time updated to {hour}:{minute:02d}",
        }
        self.events.emit("resetTimeComplete", payload)
        return payload

    def status(self) -> Dict[str, Any]:
        if self.orchestrator is None:
            return {"running": False, "cycle_count": 0}
        return self.orchestrator.status()

    # ========== shutdown ==========

    async def shutdown(self) -> None:
        """Stop cycles, clear the handshake bits, then close every connection."""
        logger.info("cell runtime shutting down")
        if self.orchestrator is not None:
            self.orchestrator.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.orchestrator is not None:
            await self.orchestrator.shutdown()
        self.store.close()
        await self.scanner.close()
        self.gateway.close()
        logger.info("cleanup completed")
