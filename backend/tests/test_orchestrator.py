"""
Scan cycle tests: one orchestrator over a fake PLC, a scripted scanner,
in-memory records and a temporary hand-off directory.
"""
import asyncio
import threading
from dataclasses import replace

import pytest

from conftest import TEMPLATE, FakeScanner
from lasermark.cycle.context import CycleOutcome
from lasermark.cycle.orchestrator import ScanCycleOrchestrator
from lasermark.db.models import PartConfig
from lasermark.plc import registers
from lasermark.services.barcode import BarcodeGenerator
from lasermark.services.image_archive import ImageArchive
from lasermark.services.marking_files import MarkingFiles

BARCODE = "240615XX0007"


@pytest.fixture
def plc(modbus_client):
    """PLC that raises start, transfer ack and final ack immediately."""
    for address in (registers.START, registers.TRANSFER_ACK, registers.FINAL_ACK):
        modbus_client.set_bit(address.register, address.bit)
    return modbus_client


@pytest.fixture
def image_dir(tmp_path):
    d = tmp_path / "cameraimage"
    d.mkdir()
    return d


@pytest.fixture
def make_orchestrator(tmp_path, gateway, store, bus, reset_signal, serial_numbers, day_ids,
                      fast_timings, fixed_clock, image_dir):
    def _make(readings, timings=None, part_number="LM-100"):
        scanner = FakeScanner(readings)
        orch = ScanCycleOrchestrator(
            gateway=gateway,
            scanner=scanner,
            serial_numbers=serial_numbers,
            barcodes=BarcodeGenerator(
                serial_numbers,
                template=store.get_active_field_template,
                shift_table=store.get_shift_table,
            ),
            store=store,
            marking_files=MarkingFiles(str(tmp_path / "code.txt"), str(tmp_path / "text.txt")),
            image_archive=ImageArchive(str(image_dir), str(tmp_path / "img_backups")),
            events=bus,
            reset_signal=reset_signal,
            day_ids=day_ids,
            timings=timings or fast_timings,
            part_number=part_number,
            operator="line-operator",
            clock=fixed_clock,
        )
        return orch, scanner
    return _make


def test_end_to_end_cycle_completes(make_orchestrator, plc, store, bus, image_dir, tmp_path):
    """NG first scan -> mark 240615XX0007 -> matching grade A second scan -> OK row."""
    (image_dir / f"{BARCODE}_cam1.bmp").write_bytes(b"img")
    orch, scanner = make_orchestrator(["NG", BARCODE + "A"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.COMPLETED
    assert orch.cycle_count == 1
    assert scanner.calls == [False, True]

    assert (tmp_path / "code.txt").read_text(encoding="utf-8") == BARCODE
    assert (tmp_path / "text.txt").read_text(encoding="utf-8") == "150624XX0007"

    records = store.list_recent()
    assert len(records) == 1
    row = records[0]
    assert row.serial_number == "0007"
    assert row.marking_data == BARCODE
    assert row.scanner_data == BARCODE + "A"
    assert row.result == "OK"
    assert row.grade == "A"
    assert row.current_id == 1
    assert row.part_number == "LM-100"
    assert row.user == "line-operator"
    assert row.remark == ""

    assert plc.bit(*_addr(registers.FIRST_SCAN_TRIGGER))
    assert plc.bit(*_addr(registers.FIRST_SCAN_NG))
    assert plc.bit(*_addr(registers.FILE_TRANSFER))
    assert plc.bit(*_addr(registers.SECOND_SCAN_TRIGGER))
    assert plc.bit(*_addr(registers.RESULT_OK))
    assert not plc.bit(*_addr(registers.RESULT_NG))

    assert not any(image_dir.iterdir())
    assert (tmp_path / "img_backups" / f"{BARCODE}_cam1.bmp").exists()

    names = bus.names()
    assert names.count("scanner_read") == 2
    assert "marking_data" in names
    assert "image_save_error" not in names


def test_first_scan_ok_part_restarts_without_marking(make_orchestrator, plc, store, bus, serial_numbers, tmp_path):
    """A part that already carries a code is not marked again."""
    orch, scanner = make_orchestrator(["240615XX0003A"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_OK_PART
    assert scanner.calls == [False]
    assert plc.bit(*_addr(registers.FIRST_SCAN_OK))
    assert not plc.bit(*_addr(registers.FIRST_SCAN_NG))
    assert store.list_recent() == []
    assert serial_numbers.current == "0007"
    assert not (tmp_path / "code.txt").exists()
    assert "first_scan_ok" in bus.names()
    assert orch.cycle_count == 0


def test_reset_during_transfer_ack_marks_row_ng_and_decrements_once(
    make_orchestrator, modbus_client, store, reset_signal, serial_numbers
):
    """Two resets before the cycle reacts cost exactly one serial give-back."""
    modbus_client.set_bit(*_addr(registers.START))

    def fire_on_transfer(register, value):
        if register == registers.FILE_TRANSFER.register and value & (1 << registers.FILE_TRANSFER.bit):
            reset_signal.fire()
            reset_signal.fire()

    modbus_client.on_write = fire_on_transfer
    orch, _ = make_orchestrator(["NG"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_RESET
    assert serial_numbers.current == "0007"
    assert reset_signal.fired_count == 1
    assert not reset_signal.is_set()

    records = store.list_recent()
    assert len(records) == 1
    assert records[0].serial_number == "0007"
    assert records[0].result == "NG"
    assert records[0].scanner_data == "N/A"

    assert modbus_client.bit(*_addr(registers.RESET_ACK))
    for register, bits in registers.RESET_MASKS.items():
        for bit in bits:
            assert not modbus_client.bit(register, bit)


def test_reset_while_waiting_for_start(make_orchestrator, modbus_client, reset_signal, serial_numbers, store):
    orch, scanner = make_orchestrator([])
    reset_signal.fire()

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_RESET
    assert scanner.calls == []
    assert serial_numbers.current == "0006"
    assert modbus_client.bit(*_addr(registers.RESET_ACK))
    assert store.list_recent() == []


def test_transfer_ack_timeout_marks_row_ng_without_decrement(
    make_orchestrator, modbus_client, fast_timings, store, serial_numbers
):
    modbus_client.set_bit(*_addr(registers.START))
    modbus_client.set_bit(1414, 3)
    timings = replace(fast_timings, plc_wait_timeout=0.05)
    orch, _ = make_orchestrator(["NG"], timings=timings)

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_TIMEOUT
    assert serial_numbers.current == "0008"
    records = store.list_recent()
    assert [r.result for r in records] == ["NG"]
    assert not modbus_client.bit(1414, 3)
    assert not modbus_client.bit(*_addr(registers.RESET_ACK))


def test_start_timeout_just_restarts(make_orchestrator, modbus_client, fast_timings, serial_numbers):
    timings = replace(fast_timings, plc_wait_timeout=0.02)
    orch, scanner = make_orchestrator([], timings=timings)

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_TIMEOUT
    assert scanner.calls == []
    assert serial_numbers.current == "0007"
    assert modbus_client.writes == []


def test_grade_outside_policy_is_retried_twice_then_accepted(make_orchestrator, plc, store, image_dir):
    """Cutoff B: grade C gets exactly two retries, the last reading is kept."""
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, scanner = make_orchestrator(["NG", BARCODE + "C", BARCODE + "C", BARCODE + "C", BARCODE + "A"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.COMPLETED
    assert scanner.calls == [False, True, True, True]
    assert scanner.readings == [BARCODE + "A"]

    row = store.list_recent()[0]
    assert row.result == "NG"
    assert row.grade == "C"
    assert plc.bit(*_addr(registers.RESULT_NG))


def test_grade_b_passes_without_retry(make_orchestrator, plc, store, image_dir):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, scanner = make_orchestrator(["NG", BARCODE + "B"])

    asyncio.run(orch.run_cycle())

    assert scanner.calls == [False, True]
    assert store.list_recent()[0].result == "OK"


def test_no_read_on_second_scan_records_grade_f(make_orchestrator, plc, store, image_dir):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, scanner = make_orchestrator(["NG", "NG", "NG", "NG"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.COMPLETED
    assert len(scanner.calls) == 4
    row = store.list_recent()[0]
    assert row.result == "NG"
    assert row.grade == "F"
    assert row.scanner_data == "NG"


def test_missing_image_is_recorded_not_fatal(make_orchestrator, plc, store, bus):
    orch, _ = make_orchestrator(["NG", BARCODE + "A"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.COMPLETED
    assert orch.cycle_count == 1
    row = store.list_recent()[0]
    assert row.result == "NG"
    assert row.grade == "A"
    assert row.remark == "Image not found"
    assert "image_save_error" in bus.names()
    # the PLC already got the verdict of the scan itself
    assert plc.bit(*_addr(registers.RESULT_OK))


def test_mismatching_data_is_ng(make_orchestrator, plc, store, image_dir):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, _ = make_orchestrator(["NG", "240615XX0099A"])

    asyncio.run(orch.run_cycle())

    row = store.list_recent()[0]
    assert row.result == "NG"
    assert plc.bit(*_addr(registers.RESULT_NG))


def test_verification_failure_abandons_cycle(make_orchestrator, plc, store, serial_numbers):
    orch, _ = make_orchestrator(["NG"])
    orch.marking_files.verify_code = lambda expected, retries=2: False

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_VERIFICATION
    assert store.list_recent() == []
    assert serial_numbers.current == "0007"
    assert not plc.bit(*_addr(registers.FILE_TRANSFER))


def test_long_readings_are_truncated(make_orchestrator, plc, store, image_dir):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    long_reading = BARCODE + "A" + "Z" * 40
    orch, scanner = make_orchestrator(["NG", long_reading, long_reading, long_reading])

    asyncio.run(orch.run_cycle())

    row = store.list_recent()[0]
    assert row.scanner_data == long_reading[:29]
    assert row.grade == "Z"


def test_run_forever_survives_unexpected_errors(make_orchestrator, plc, image_dir):
    """A failing cycle is logged and followed by the next one."""
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, scanner = make_orchestrator(["NG", BARCODE + "A"])
    original = orch.run_cycle
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return await original()

    orch.run_cycle = flaky
    asyncio.run(orch.run_forever(max_cycles=2))

    assert len(calls) == 2
    assert orch.cycle_count == 1
    assert orch.last_outcome == CycleOutcome.COMPLETED
    assert not orch.running


def test_shutdown_clears_handshake_bits(make_orchestrator, modbus_client):
    modbus_client.registers[1414] = 0xFFFF
    modbus_client.registers[1415] = 0xFFFF
    orch, _ = make_orchestrator([])

    asyncio.run(orch.shutdown())

    assert modbus_client.registers[1414] == 0xFFFF & ~0b11011000
    assert modbus_client.registers[1415] == 0xFFFF & ~0b10000
    assert not orch.running


def test_status_snapshot(make_orchestrator, plc, image_dir):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    orch, _ = make_orchestrator(["NG", BARCODE + "A"])
    asyncio.run(orch.run_cycle())

    status = orch.status()

    assert status["cycle_count"] == 1
    assert status["state"] == "FINALIZE"
    assert status["serial"] == "0007"
    assert status["barcode_text"] == BARCODE
    assert status["current_serial"] == "0008"
    assert status["part_number"] == "LM-100"


def _addr(address):
    return address.register, address.bit


def test_reset_with_failing_ack_write_still_marks_row_ng(
    make_orchestrator, modbus_client, store, reset_signal, serial_numbers
):
    """The PLC link dropping on the reset ack does not leave the row at N/A."""
    modbus_client.set_bit(*_addr(registers.START))
    modbus_client.fail_writes_to = {registers.RESET_ACK.register}

    def fire_on_transfer(register, value):
        if register == registers.FILE_TRANSFER.register and value & (1 << registers.FILE_TRANSFER.bit):
            reset_signal.fire()

    modbus_client.on_write = fire_on_transfer
    orch, _ = make_orchestrator(["NG"])

    outcome = asyncio.run(orch.run_cycle())

    assert outcome == CycleOutcome.ABORTED_RESET
    assert [(r.serial_number, r.result) for r in store.list_recent()] == [("0007", "NG")]
    assert serial_numbers.current == "0007"
    assert not reset_signal.is_set()


def test_part_number_follows_active_part_between_cycles(make_orchestrator, plc, store, seeded_factory):
    """Switching the active part changes both the barcode and the recorded part number."""
    orch, _ = make_orchestrator(
        ["NG", BARCODE + "A", "NG", "240615YY0008A"],
        part_number=store.get_part_number,
    )
    asyncio.run(orch.run_cycle())

    db = seeded_factory()
    db.query(PartConfig).update({PartConfig.is_active: False})
    template = [dict(f, value="YY") if f["fieldName"] == "Plant" else f for f in TEMPLATE]
    db.add(PartConfig(part_no="LM-200", fields=template, is_active=True))
    db.commit()
    db.close()

    asyncio.run(orch.run_cycle())

    rows = store.list_recent()
    assert [(r.marking_data, r.part_number) for r in rows] == [
        ("240615YY0008", "LM-200"),
        (BARCODE, "LM-100"),
    ]
    assert orch.status()["part_number"] == "LM-200"


def test_record_writes_run_off_the_event_loop_thread(make_orchestrator, plc, store, image_dir, monkeypatch):
    (image_dir / f"{BARCODE}.bmp").write_bytes(b"img")
    loop_thread = threading.get_ident()
    threads = []
    insert, update = store.insert, store.update_last_matching

    def tracked_insert(payload):
        threads.append(threading.get_ident())
        return insert(payload)

    def tracked_update(serial, patch):
        threads.append(threading.get_ident())
        return update(serial, patch)

    monkeypatch.setattr(store, "insert", tracked_insert)
    monkeypatch.setattr(store, "update_last_matching", tracked_update)
    orch, _ = make_orchestrator(["NG", BARCODE + "A"])

    assert asyncio.run(orch.run_cycle()) == CycleOutcome.COMPLETED
    assert len(threads) == 2
    assert loop_thread not in threads
