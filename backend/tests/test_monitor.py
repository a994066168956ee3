"""
Reset signal, pollers, supervision and the reset-aware bit wait.
"""
import asyncio

from lasermark.cycle.context import WaitResult
from lasermark.cycle.waits import wait_for_bit
from lasermark.monitor.alarm_monitor import AlarmMonitor
from lasermark.monitor.reset_monitor import ResetMonitor, ResetSignal
from lasermark.monitor.supervisor import supervise
from lasermark.plc import registers
from lasermark.plc.registers import RegisterAddress


def test_reset_signal_coalesces():
    signal = ResetSignal()
    assert signal.fire()
    assert not signal.fire()
    assert signal.fired_count == 1

    signal.clear()
    assert not signal.is_set()
    assert asyncio.run(signal.wait(0)) is False


def test_reset_signal_wait_wakes_on_fire():
    async def scenario():
        signal = ResetSignal()
        asyncio.get_running_loop().call_later(0.01, signal.fire)
        return await signal.wait(1.0)

    assert asyncio.run(scenario()) is True


def test_reset_monitor_fires_once_per_rising_edge(gateway, modbus_client, bus):
    signal = ResetSignal()
    monitor = ResetMonitor(gateway, signal, bus)

    async def scenario():
        edges = []
        modbus_client.set_bit(1600, 0)
        edges.append(await monitor.poll_once())
        edges.append(await monitor.poll_once())
        modbus_client.registers[1600] = 0
        edges.append(await monitor.poll_once())
        signal.clear()
        modbus_client.set_bit(1600, 0)
        edges.append(await monitor.poll_once())
        return edges

    assert asyncio.run(scenario()) == [True, False, False, True]
    assert signal.fired_count == 2
    assert bus.names() == ["reset", "reset"]


def test_alarm_monitor_reports_every_poll_while_set(gateway, modbus_client, bus):
    rule = registers.ALARM_RULES[0]
    monitor = AlarmMonitor(gateway, rule, bus)
    modbus_client.registers[1490] = 0b00110

    async def scenario():
        first = await monitor.poll_once()
        second = await monitor.poll_once()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second == ["emergency-button", "safety-curtain"]
    event_name, payload = bus.events[0]
    assert event_name == "emergency-button"
    assert payload["register"] == 1490
    assert payload["bit"] == 1
    assert payload["message"] == "Emergency push button pressed"


def test_alarm_monitor_survives_read_errors(gateway, modbus_client, bus):
    modbus_client.fail_reads = True
    monitor = AlarmMonitor(gateway, registers.ALARM_RULES[1], bus)
    assert asyncio.run(monitor.poll_once()) == []


def test_supervisor_restarts_crashed_poller():
    runs = []

    async def poller():
        runs.append(1)
        raise RuntimeError("poller died")

    asyncio.run(supervise("test poller", poller, restart_delay=0, max_restarts=2))
    assert len(runs) == 3


def test_supervisor_stops_on_cancel():
    async def scenario():
        task = asyncio.create_task(supervise("idle", lambda: asyncio.sleep(10), restart_delay=0))
        await asyncio.sleep(0.01)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return True
        return False

    assert asyncio.run(scenario())


def test_wait_for_bit_condition_met(gateway, modbus_client):
    modbus_client.set_bit(1410, 3)
    result = asyncio.run(wait_for_bit(gateway, registers.TRANSFER_ACK, True, ResetSignal(),
                                      timeout=1.0, poll_interval=0.001))
    assert result is WaitResult.CONDITION_MET


def test_wait_for_bit_times_out(gateway):
    result = asyncio.run(wait_for_bit(gateway, registers.TRANSFER_ACK, True, ResetSignal(),
                                      timeout=0.02, poll_interval=0.005))
    assert result is WaitResult.TIMEOUT


def test_wait_for_bit_reset_wins_mid_wait(gateway):
    async def scenario():
        signal = ResetSignal()
        asyncio.get_running_loop().call_later(0.02, signal.fire)
        return await wait_for_bit(gateway, registers.FINAL_ACK, True, signal,
                                  timeout=5.0, poll_interval=1.0)

    assert asyncio.run(scenario()) is WaitResult.RESET


def test_wait_for_bit_pending_reset_beats_true_bit(gateway, modbus_client):
    modbus_client.set_bit(1400, 0)
    signal = ResetSignal()
    signal.fire()
    result = asyncio.run(wait_for_bit(gateway, registers.START, True, signal, timeout=1.0))
    assert result is WaitResult.RESET


def test_wait_for_bit_keeps_polling_through_read_errors(gateway, modbus_client):
    modbus_client.fail_reads = True

    async def scenario():
        loop = asyncio.get_running_loop()

        def recover():
            modbus_client.fail_reads = False
            modbus_client.set_bit(1415, 7)

        loop.call_later(0.02, recover)
        return await wait_for_bit(gateway, RegisterAddress(1415, 7), True, ResetSignal(),
                                  timeout=1.0, poll_interval=0.005)

    assert asyncio.run(scenario()) is WaitResult.CONDITION_MET
