"""
Serial number issuance: increments, daily reset, catch-up, wraparound, manual reset.
"""
from datetime import datetime, timedelta

import pytest

from lasermark.services.serial_number import (
    LatestRecord,
    SerialCounter,
    SerialNumberService,
    format_serial,
    parse_reset_time,
    reset_boundary,
)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_service(now=datetime(2024, 6, 15, 10, 0), initial=1, latest=None, latest_record=lambda: None):
    clock = Clock(now)
    service = SerialNumberService.from_config(
        initial=initial,
        reset_time="06:00",
        reset_interval="daily",
        latest=latest,
        latest_record=latest_record,
        clock=clock,
    )
    return service, clock


def test_consecutive_serials():
    service, _ = make_service(initial=1)
    assert [service.next_serial() for _ in range(5)] == ["0001", "0002", "0003", "0004", "0005"]


def test_resumes_after_latest_record():
    latest = LatestRecord(serial="0041", timestamp=datetime(2024, 6, 15, 9, 0))
    service, _ = make_service(latest=latest)
    assert service.next_serial() == "0042"


def test_daily_reset_when_last_record_predates_reset_time():
    latest = LatestRecord(serial="0041", timestamp=datetime(2024, 6, 15, 5, 0))
    service, _ = make_service(initial=1, latest=latest)
    assert service.next_serial() == "0001"


def test_daily_reset_crossing_reset_time():
    service, clock = make_service(now=datetime(2024, 6, 15, 5, 58), initial=1)
    service.next_serial()
    service.next_serial()

    clock.now = datetime(2024, 6, 15, 6, 1)
    assert service.next_serial() == "0001"
    assert service.next_serial() == "0002"


def test_no_daily_reset_when_interval_is_none():
    service, clock = make_service(now=datetime(2024, 6, 15, 5, 58), initial=1)
    service.counter.reset_interval = "none"
    service.next_serial()

    clock.now += timedelta(minutes=5)
    assert service.next_serial() == "0002"


def test_wraparound_to_initial():
    service, clock = make_service(initial=5)
    service.counter.current = 9998
    assert service.next_serial() == "9998"

    clock.now += timedelta(minutes=1)
    assert service.next_serial() == "0005"
    assert service.counter.last_reset_at == clock.now


def test_manual_reset_takes_precedence():
    latest = LatestRecord(serial="0100", timestamp=datetime(2024, 6, 15, 9, 59))
    service, _ = make_service(latest=latest, latest_record=lambda: latest)

    service.manual_reset(500)
    assert service.counter.manual_reset_pending
    assert service.next_serial() == "0500"
    assert not service.counter.manual_reset_pending
    assert service.next_serial() == "0501"


def test_manual_reset_rejects_out_of_range():
    service, _ = make_service()
    with pytest.raises(ValueError):
        service.manual_reset(9999)
    with pytest.raises(ValueError):
        service.manual_reset(-1)


def test_catch_up_from_newer_record():
    newer = LatestRecord(serial="0020", timestamp=datetime(2024, 6, 15, 9, 30))
    service, _ = make_service(latest_record=lambda: newer)
    assert service.next_serial() == "0021"


def test_decrement_floors_at_zero():
    service = SerialNumberService(SerialCounter(current=0))
    assert service.decrement() == "0000"


def test_set_reset_time_validates():
    service, _ = make_service()
    service.set_reset_time(22, 30)
    assert (service.counter.reset_hour, service.counter.reset_minute) == (22, 30)
    with pytest.raises(ValueError):
        service.set_reset_time(24, 0)
    with pytest.raises(ValueError):
        parse_reset_time("06:60")


def test_reset_boundary():
    assert reset_boundary(datetime(2024, 6, 15, 5, 0), 6, 0) == datetime(2024, 6, 14, 6, 0)
    assert reset_boundary(datetime(2024, 6, 15, 6, 0), 6, 0) == datetime(2024, 6, 15, 6, 0)
    assert format_serial(7) == "0007"
