# lasermark/cycle/orchestrator.py

"""
The scan cycle: one part at a time through

    AWAIT_START -> FIRST_SCAN -> GENERATE_BARCODE -> AWAIT_TRANSFER_ACK
        -> SECOND_SCAN -> FINALIZE

Every PLC wait races the bit against the shared reset signal and a timeout.
A reset unwinds the cycle through ResetDetected, a timeout through
CycleTimeout; both land in run_cycle(), which does the step cleanup and
reports the outcome. Anything else propagates to run_forever(), which logs it
and cools down before the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from lasermark.core.errors import (
    CycleTimeout,
    FirstScanAccepted,
    GradeRejected,
    ImageNotFound,
    ResetDetected,
    TransportError,
    VerificationFailure,
    WriteTimeout,
)
from lasermark.cycle.context import (
    CycleContext,
    CycleOutcome,
    CycleState,
    CycleTimings,
    WaitResult,
)
from lasermark.cycle.waits import wait_for_bit
from lasermark.monitor.reset_monitor import ResetSignal
from lasermark.plc import registers
from lasermark.plc.registers import RegisterAddress
from lasermark.scanner.client import NG
from lasermark.services.barcode import BarcodeGenerator, serial_file_text
from lasermark.services.day_id import DayIdCounter
from lasermark.services.grading import NG_GRADE, AcceptablePolicy, is_ng, split_reading
from lasermark.services.image_archive import ImageArchive
from lasermark.services.marking_files import MarkingFiles
from lasermark.services.serial_number import SerialNumberService

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
IMAGE_NOT_FOUND = "Image not found"
FILE_VERIFY_RETRIES = 2


class ScanCycleOrchestrator:
    def __init__(
        self,
        *,
        gateway: Any,
        scanner: Any,
        serial_numbers: SerialNumberService,
        barcodes: BarcodeGenerator,
        store: Any,
        marking_files: MarkingFiles,
        image_archive: ImageArchive,
        events: Any,
        reset_signal: ResetSignal,
        day_ids: Optional[DayIdCounter] = None,
        timings: Optional[CycleTimings] = None,
        part_number: Union[str, Callable[[], str]] = "",
        operator: str = "Unknown",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.gateway = gateway
        self.scanner = scanner
        self.serial_numbers = serial_numbers
        self.barcodes = barcodes
        self.store = store
        self.marking_files = marking_files
        self.image_archive = image_archive
        self.events = events
        self.reset_signal = reset_signal
        self.day_ids = day_ids or DayIdCounter()
        self.timings = timings or CycleTimings()
        # a callable is re-read every cycle, together with the barcode template
        self._part_source: Callable[[], str] = part_number if callable(part_number) else (lambda: part_number)
        self.part_number = self._part_source()
        self.operator = operator
        self._clock = clock

        self.cycle_count = 0
        self.current: Optional[CycleContext] = None
        self.last_outcome: Optional[CycleOutcome] = None
        self._running = False

    # ========== loop ==========

    async def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """Run cycles until stop(). `max_cycles` bounds the iterations (tests)."""
        self._running = True
        iterations = 0
        while self._running:
            if max_cycles is not None and iterations >= max_cycles:
                break
            iterations += 1

            await asyncio.sleep(self.timings.cycle_gap)
            if not self._running:
                break

            logger.warning("===== scan cycle %d =====", self.cycle_count + 1)
            try:
                self.last_outcome = await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("unexpected error in scan cycle, cooling down %.0fs", self.timings.error_cooldown)
                self.last_outcome = CycleOutcome.FAILED
                await asyncio.sleep(self.timings.error_cooldown)
        self._running = False
        logger.info("scan cycle loop stopped after %d completed cycles", self.cycle_count)

    def stop(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleOutcome:
        self.part_number = await asyncio.to_thread(self._part_source)
        ctx = CycleContext(sequence=self.cycle_count + 1, part_number=self.part_number)
        self.current = ctx
        try:
            await self._await_start(ctx)
            await self._first_scan(ctx)
            await self._generate_barcode(ctx)
            await self._await_transfer_ack(ctx)
            await self._second_scan(ctx)
            await self._finalize(ctx)
        except ResetDetected as e:
            logger.warning("%s, restarting cycle", e)
            try:
                await self.handle_reset()
            except TransportError as err:
                logger.error("error acknowledging reset: %s", err)
            finally:
                await self._abandon_row(ctx)
            return CycleOutcome.ABORTED_RESET
        except (CycleTimeout, WriteTimeout) as e:
            logger.warning("%s, restarting cycle", e)
            try:
                if ctx.state != CycleState.AWAIT_START:
                    await self._reset_bits_quietly()
            finally:
                await self._abandon_row(ctx)
            return CycleOutcome.ABORTED_TIMEOUT
        except FirstScanAccepted as e:
            logger.info("%s, restarting cycle without marking", e)
            return CycleOutcome.ABORTED_OK_PART
        except VerificationFailure as e:
            logger.error("%s, cycle abandoned without a record", e)
            self.serial_numbers.decrement()
            return CycleOutcome.ABORTED_VERIFICATION

        self.cycle_count += 1
        logger.info("completed scan cycle %d", self.cycle_count)
        return CycleOutcome.COMPLETED

    # ========== steps ==========

    async def _await_start(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.AWAIT_START
        logger.info("waiting for start signal (%s)...", registers.START)
        await self._wait(ctx, registers.START)

    async def _first_scan(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.FIRST_SCAN
        reading = await self._scan(registers.FIRST_SCAN_TRIGGER, second=False)
        ctx.first_reading = reading
        self._checkpoint(ctx)

        if is_ng(reading):
            logger.warning("first scan data is NG, proceeding with marking")
            await self._set(registers.FIRST_SCAN_NG)
            return

        self.events.emit("first_scan_ok", {
            "timestamp": datetime.now().isoformat(),
            "scannerData": reading,
            "message": "First scan detected OK part, cycle restarting",
        })
        await self._set(registers.FIRST_SCAN_OK)
        raise FirstScanAccepted(reading)

    async def _generate_barcode(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.GENERATE_BARCODE
        now = self._clock()
        data = self.barcodes.generate(now)
        ctx.barcode_text = data.text
        ctx.serial = data.serial
        self._checkpoint(ctx)

        self.marking_files.write_marking(data.text, serial_file_text(now, data.serial), retries=FILE_VERIFY_RETRIES)
        self.events.emit("marking_data", {"timestamp": now.isoformat(), "data": data.text})
        if not self.marking_files.verify_code(data.text, retries=FILE_VERIFY_RETRIES):
            raise VerificationFailure(str(self.marking_files.code_path), data.text)

        ctx.day_id = self.day_ids.next()
        await asyncio.to_thread(
            self.store.insert,
            self._record(ctx, scanner_data=NOT_AVAILABLE, result=NOT_AVAILABLE, grade=NOT_AVAILABLE),
        )
        ctx.row_inserted = True

    async def _await_transfer_ack(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.AWAIT_TRANSFER_ACK
        logger.info("writing %s to signal file transfer", registers.FILE_TRANSFER)
        await self._set(registers.FILE_TRANSFER)
        await self._wait(ctx, registers.TRANSFER_ACK)

    async def _second_scan(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.SECOND_SCAN
        policy = await asyncio.to_thread(self.store.get_grade_policy)
        reading = await self._read_second_with_retries(ctx, policy)
        ctx.second_reading = reading

        if is_ng(reading):
            ctx.grade = NG_GRADE
            ctx.matched = False
            passed = False
        else:
            data, ctx.grade = split_reading(reading)
            ctx.matched = self.marking_files.matches_code(data)
            grade_ok = policy.accepts(ctx.grade)
            logger.info("data match=%s grade %s accepted=%s", ctx.matched, ctx.grade, grade_ok)
            passed = ctx.matched and grade_ok

        await self._set(registers.RESULT_OK if passed else registers.RESULT_NG)

        logger.info("waiting %.0fs to check for image...", self.timings.image_wait)
        await self._pause(ctx, self.timings.image_wait)
        try:
            self.image_archive.archive(ctx.barcode_text)
        except ImageNotFound as e:
            logger.error("%s", e)
            self.events.emit("image_save_error", {
                "timestamp": datetime.now().isoformat(),
                "message": f"Failed to save image for marking data: {ctx.barcode_text}",
                "path": None,
            })
            ctx.remark = IMAGE_NOT_FOUND
            passed = False
        except OSError as e:
            logger.error("error backing up image: %s", e)

        await asyncio.to_thread(
            self.store.update_last_matching,
            ctx.serial,
            self._record(ctx, scanner_data=reading, result=passed, grade=ctx.grade, remark=ctx.remark),
        )
        ctx.result_recorded = True

    async def _read_second_with_retries(self, ctx: CycleContext, policy: AcceptablePolicy) -> str:
        retries = self.timings.second_scan_retries
        attempt = 0
        while True:
            reading = await self._scan(registers.SECOND_SCAN_TRIGGER, second=True)
            logger.info("second scanner data (attempt %d): %s", attempt + 1, reading)
            try:
                self._check_grade(reading, policy)
                return reading
            except GradeRejected as e:
                if attempt >= retries:
                    logger.info("%s after all retries, keeping last reading", e)
                    return reading
                attempt += 1
                logger.info("%s, retrying in %.0fs (attempt %d/%d)",
                            e, self.timings.second_scan_retry_delay, attempt, retries)
                await self._pause(ctx, self.timings.second_scan_retry_delay)

    @staticmethod
    def _check_grade(reading: str, policy: AcceptablePolicy) -> None:
        if is_ng(reading):
            raise GradeRejected(NG, policy.accepted)
        _, grade = split_reading(reading)
        if not policy.accepts(grade):
            raise GradeRejected(grade, policy.accepted)

    async def _finalize(self, ctx: CycleContext) -> None:
        ctx.state = CycleState.FINALIZE
        logger.info("performing final checks...")
        await self._wait(ctx, registers.FINAL_ACK)
        await asyncio.sleep(self.timings.final_settle)

    # ========== reset / cleanup ==========

    async def handle_reset(self) -> None:
        """Acknowledge a reset and give back the serial it cost. Runs once per consumed signal."""
        logger.info("handling reset signal")
        try:
            await self.gateway.write_bit(registers.RESET_ACK.register, registers.RESET_ACK.bit, True)
            await self.reset_bits()
        finally:
            self.serial_numbers.decrement()
            self.reset_signal.clear()

    async def reset_bits(self) -> None:
        for register, bits in registers.RESET_MASKS.items():
            await self.gateway.reset_masked_bits(register, bits)
        await asyncio.sleep(self.timings.reset_settle)
        logger.info("bits reset successfully")

    async def _reset_bits_quietly(self) -> None:
        try:
            await self.reset_bits()
        except TransportError as e:
            logger.error("error in masked bit reset: %s", e)

    async def _abandon_row(self, ctx: CycleContext) -> None:
        """The N/A row of an aborted cycle becomes NG. Rows with a final result stay as they are."""
        if not ctx.row_inserted:
            return
        await asyncio.sleep(self.timings.abort_settle)
        if ctx.result_recorded:
            return
        await asyncio.to_thread(
            self.store.update_last_matching,
            ctx.serial,
            self._record(ctx, scanner_data=NOT_AVAILABLE, result="NG", grade=NOT_AVAILABLE),
        )
        ctx.result_recorded = True

    async def shutdown(self) -> None:
        logger.info("shutting down scan cycle")
        self.stop()
        await self._reset_bits_quietly()

    # ========== helpers ==========

    async def _wait(self, ctx: CycleContext, address: RegisterAddress) -> None:
        result = await wait_for_bit(
            self.gateway,
            address,
            True,
            self.reset_signal,
            timeout=self.timings.plc_wait_timeout,
            poll_interval=self.timings.plc_poll_interval,
        )
        if result is WaitResult.RESET:
            raise ResetDetected(ctx.state.value)
        if result is WaitResult.TIMEOUT:
            raise CycleTimeout(str(address), self.timings.plc_wait_timeout)

    async def _pause(self, ctx: CycleContext, seconds: float) -> None:
        if await self.reset_signal.wait(seconds):
            raise ResetDetected(ctx.state.value)

    def _checkpoint(self, ctx: CycleContext) -> None:
        if self.reset_signal.is_set():
            raise ResetDetected(ctx.state.value)

    async def _set(self, address: RegisterAddress) -> None:
        await self.gateway.write_bit(address.register, address.bit, True)

    async def _scan(self, trigger: RegisterAddress, *, second: bool) -> str:
        label = "Second" if second else "First"
        logger.info("%s scanner data acquisition, trigger %s", label.lower(), trigger)
        await self._set(trigger)
        reading = await self.scanner.get_reading(expect_second_line=second)
        if not is_ng(reading):
            reading = reading[: self.timings.max_reading_length]
        self.events.emit("scanner_read", {
            "timestamp": datetime.now().isoformat(),
            "scannerType": label,
            "data": reading,
        })
        return reading

    def _record(self, ctx: CycleContext, **fields: Any) -> Dict[str, Any]:
        record = {
            "serial_number": ctx.serial,
            "marking_data": ctx.barcode_text,
            "current_id": ctx.day_id,
            "part_number": ctx.part_number,
            "user": self.operator,
        }
        record.update(fields)
        return record

    def status(self) -> Dict[str, Any]:
        ctx = self.current
        return {
            "running": self._running,
            "cycle_count": self.cycle_count,
            "state": ctx.state.value if ctx else None,
            "sequence": ctx.sequence if ctx else None,
            "serial": ctx.serial if ctx else None,
            "barcode_text": ctx.barcode_text if ctx else None,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "current_serial": self.serial_numbers.current,
            "part_number": self.part_number,
        }
