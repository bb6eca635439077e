from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from am43ctl.core.arbiter import LinkArbiter
from am43ctl.core.codec import (
    BATTERY_REQUEST_FRAME,
    CLOSE_FRAME,
    LIGHT_REQUEST_FRAME,
    NOTIFY_CHAR_UUID,
    OPEN_FRAME,
    POSITION_REQUEST_FRAME,
    encode_set_position,
)
from am43ctl.core.device import Device
from am43ctl.core.errors import InvalidPositionError, TransportConnectError, TransportSendError
from am43ctl.core.model import Action, BlindState, DeviceStatus, SessionState
from am43ctl.core.retry import RetryPolicy
from am43ctl.core.scheduler import PollScheduler

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def battery_frame(value: int) -> bytes:
    return bytes.fromhex("9aa20700000000") + bytes([value]) + b"\x00\x00"


def light_frame(value: int) -> bytes:
    return bytes.fromhex("9aaa0200") + bytes([value]) + b"\x00"


def position_frame(value: int) -> bytes:
    return bytes.fromhex("9aa7070f32") + bytes([value]) + bytes.fromhex("0000003079")


class RecordingTimer:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, delay_s: float, job) -> None:
        self.delays.append(delay_s)


class FakeLink:
    def __init__(
        self,
        *,
        battery: int = 80,
        light: int = 20,
        position: int = 45,
        fail_writes: bool = False,
        fail_connects: int = 0,
        answer: set[bytes] | None = None,
    ) -> None:
        self.responses = {
            BATTERY_REQUEST_FRAME: battery_frame(battery),
            LIGHT_REQUEST_FRAME: light_frame(light),
            POSITION_REQUEST_FRAME: position_frame(position),
        }
        self.answer = answer if answer is not None else set(self.responses)
        self.fail_writes = fail_writes
        self.fail_connects = fail_connects
        self.callback = None
        self.connected = False
        self.connects = 0
        self.unsubscribes = 0
        self.writes: list[tuple[object, bytes]] = []
        self.holders: list[object] = []
        self.arbiter: LinkArbiter | None = None

    async def connect(self) -> None:
        self.connects += 1
        if self.fail_connects:
            self.fail_connects -= 1
            raise TransportConnectError("out of range")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def discover_characteristic(self, service_uuid: str, char_uuid: str) -> str:
        return char_uuid

    async def subscribe(self, characteristic, callback) -> None:
        self.callback = callback

    async def unsubscribe(self, characteristic) -> None:
        self.unsubscribes += 1
        self.callback = None

    async def write(self, target, payload: bytes) -> None:
        self.writes.append((target, payload))
        if self.arbiter is not None:
            self.holders.append(self.arbiter.holder)
        if self.fail_writes:
            raise TransportSendError("write rejected")
        if payload in self.answer and payload in self.responses and self.callback is not None:
            self.callback(self.responses[payload])


def make_device(link: FakeLink, *, max_retries: int = 30, arbiter: LinkArbiter | None = None, address: str = "02:FC:98:A9:44:6B") -> tuple[Device, RecordingTimer, list[DeviceStatus]]:
    timer = RecordingTimer()
    arbiter = arbiter or LinkArbiter(backoff_s=0)
    link.arbiter = arbiter
    device = Device(
        address,
        link,
        arbiter=arbiter,
        retry=RetryPolicy(max_retries=max_retries, delay_s=0),
        scheduler=PollScheduler(timer=timer),
        disconnect_grace_s=0,
        notify_timeout_s=0.05,
        clock=lambda: NOW,
    )
    events: list[DeviceStatus] = []
    device.add_listener(events.append)
    return device, timer, events


def test_initial_status() -> None:
    device, _, _ = make_device(FakeLink())
    status = device.status
    assert status.id == "02fc98a9446b"
    assert status.blind_state is BlindState.UNKNOWN
    assert status.last_action is Action.NONE
    assert status.battery_percent is None
    assert device.session_state is SessionState.IDLE


def test_refresh_reads_all_values_at_position_45() -> None:
    link = FakeLink(position=0x2D)
    device, _, events = make_device(link)

    assert asyncio.run(device.refresh()) is True

    status = device.status
    assert status.position_percent == 45
    assert status.blind_state is BlindState.OPEN
    assert status.battery_percent == 80
    assert status.light_percent == 20
    assert status.connected_at == NOW
    assert status.last_success_at == NOW
    assert events == [status]
    assert link.writes == [
        (NOTIFY_CHAR_UUID, BATTERY_REQUEST_FRAME),
        (NOTIFY_CHAR_UUID, LIGHT_REQUEST_FRAME),
        (NOTIFY_CHAR_UUID, POSITION_REQUEST_FRAME),
    ]
    assert link.unsubscribes == 1
    assert not link.connected


def test_refresh_at_position_100_is_closed() -> None:
    device, _, _ = make_device(FakeLink(position=0x64))
    asyncio.run(device.refresh())
    assert device.status.blind_state is BlindState.CLOSED


def test_incomplete_handshake_is_retried_then_dropped() -> None:
    link = FakeLink(answer={BATTERY_REQUEST_FRAME})
    device, _, events = make_device(link, max_retries=1)

    assert asyncio.run(device.refresh()) is False

    assert link.connects == 2
    assert events == []
    assert device.status.last_success_at is None
    assert device.status.battery_percent == 80
    assert device.status.light_percent is None


@pytest.mark.parametrize("position, expected", [(0, BlindState.OPEN), (45, BlindState.OPEN), (99, BlindState.OPEN), (100, BlindState.CLOSED)])
def test_goto_position_sets_state_from_target(position: int, expected: BlindState) -> None:
    link = FakeLink()
    device, _, _ = make_device(link)

    asyncio.run(device.goto_position(position))

    assert device.status.blind_state is expected
    assert device.status.last_action is Action.SET_POSITION
    assert link.writes == [(NOTIFY_CHAR_UUID, encode_set_position(position))]


@pytest.mark.parametrize("position", [-1, 101, 255, True, 4.5])
def test_goto_position_rejects_invalid_input(position) -> None:
    link = FakeLink()
    device, _, _ = make_device(link)

    with pytest.raises(InvalidPositionError):
        asyncio.run(device.goto_position(position))

    assert device.status.last_action is Action.NONE
    assert link.writes == []


def test_open_and_stop_are_optimistically_open() -> None:
    link = FakeLink()
    device, _, _ = make_device(link)

    asyncio.run(device.open())
    assert device.status.blind_state is BlindState.OPEN
    assert device.status.last_action is Action.OPEN

    asyncio.run(device.stop())
    assert device.status.blind_state is BlindState.OPEN
    assert device.status.last_action is Action.STOP
    assert link.writes[0] == (NOTIFY_CHAR_UUID, OPEN_FRAME)


def test_failing_write_gives_up_after_31_attempts() -> None:
    link = FakeLink(fail_writes=True)
    device, timer, events = make_device(link)

    assert asyncio.run(device.close()) is False

    assert len(link.writes) == 31
    assert all(holder is device for holder in link.holders)
    assert device.status.last_action is Action.CLOSE
    assert device.status.blind_state is BlindState.CLOSED
    assert events == []
    assert timer.delays == []
    assert link.arbiter.holder is None
    assert device.session_state is SessionState.IDLE


def test_successful_close_schedules_two_forced_reads() -> None:
    link = FakeLink()
    device, timer, events = make_device(link)

    assert asyncio.run(device.close()) is True

    assert link.writes == [(NOTIFY_CHAR_UUID, CLOSE_FRAME)]
    assert timer.delays == [15.0, 142.0]
    assert len(events) == 1
    assert events[0].last_action is Action.CLOSE
    assert events[0].blind_state is BlindState.CLOSED
    assert events[0].last_success_at is None


def test_connect_failures_are_retried() -> None:
    link = FakeLink(fail_connects=2)
    device, _, _ = make_device(link)

    assert asyncio.run(device.open()) is True
    assert link.connects == 3
    assert len(link.writes) == 1


def test_devices_never_share_the_radio() -> None:
    arbiter = LinkArbiter(backoff_s=0.001)
    links = [FakeLink(), FakeLink()]
    overlaps: list[bool] = []

    first, _, _ = make_device(links[0], arbiter=arbiter, address="AA:AA:AA:AA:AA:01")
    second, _, _ = make_device(links[1], arbiter=arbiter, address="AA:AA:AA:AA:AA:02")

    original_write = FakeLink.write

    async def watched_write(self, target, payload):
        overlaps.append(links[0].connected and links[1].connected)
        await asyncio.sleep(0)
        await original_write(self, target, payload)

    for link in links:
        link.write = watched_write.__get__(link)

    async def scenario() -> list[bool]:
        return await asyncio.gather(first.refresh(), second.close(), first.open())

    assert asyncio.run(scenario()) == [True, True, True]
    assert overlaps
    assert not any(overlaps)
    assert arbiter.holder is None


def test_listener_errors_do_not_break_the_device() -> None:
    device, _, events = make_device(FakeLink())
    received: list[DeviceStatus] = []

    def broken(_: DeviceStatus) -> None:
        raise RuntimeError("boom")

    async def async_listener(status: DeviceStatus) -> None:
        received.append(status)

    device.add_listener(broken)
    device.add_listener(async_listener)

    assert asyncio.run(device.refresh()) is True
    assert len(events) == 1
    assert len(received) == 1


def test_write_fails_when_characteristic_is_missing() -> None:
    link = FakeLink()

    async def missing(service_uuid: str, char_uuid: str) -> str:
        raise TransportSendError(f"Characteristic {char_uuid} not found")

    link.discover_characteristic = missing
    device, timer, events = make_device(link, max_retries=2)

    assert asyncio.run(device.open()) is False
    assert link.connects == 3
    assert link.writes == []
    assert not link.connected
    assert events == []
