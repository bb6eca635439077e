"""A single AM43 blind and its radio sessions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from am43ctl.core.arbiter import LinkArbiter
from am43ctl.core.codec import (
    BATTERY_REQUEST_FRAME,
    CLOSE_FRAME,
    NOTIFY_CHAR_UUID,
    OPEN_FRAME,
    SERVICE_UUID,
    STOP_FRAME,
    encode_set_position,
)
from am43ctl.core.decoder import DecodeStep, NotificationDecoder, NotificationKind
from am43ctl.core.device_match import normalize_device_id
from am43ctl.core.errors import InvalidPositionError, TransportError
from am43ctl.core.model import Action, BlindState, DeviceStatus, SessionState, state_for_position
from am43ctl.core.retry import RetryPolicy
from am43ctl.core.scheduler import PollScheduler
from am43ctl.transports.base import BlindLink

LOGGER = logging.getLogger(__name__)

DISCONNECT_GRACE_S = 1.0
NOTIFY_TIMEOUT_S = 10.0

StatusListener = Callable[[DeviceStatus], Awaitable[None] | None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Device:
    """Owns the status of one blind and serializes its radio sessions.

    Commands update ``last_action`` and ``blind_state`` as soon as they are
    issued. The forced reads scheduled after a confirmed write reconcile the
    optimistic state with what the motor reports.
    """

    def __init__(
        self,
        address: str,
        link: BlindLink,
        *,
        arbiter: LinkArbiter,
        retry: RetryPolicy | None = None,
        scheduler: PollScheduler | None = None,
        disconnect_grace_s: float = DISCONNECT_GRACE_S,
        notify_timeout_s: float = NOTIFY_TIMEOUT_S,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.address = address
        self.id = normalize_device_id(address)
        self._link = link
        self._arbiter = arbiter
        self._retry = retry or RetryPolicy()
        self._scheduler = scheduler or PollScheduler()
        self._disconnect_grace_s = disconnect_grace_s
        self._notify_timeout_s = notify_timeout_s
        self._clock = clock
        self._lock = asyncio.Lock()
        self._listeners: list[StatusListener] = []

        self.session_state = SessionState.IDLE
        self._connected_at: datetime | None = None
        self._last_success_at: datetime | None = None
        self._last_action = Action.NONE
        self._blind_state = BlindState.UNKNOWN
        self._battery: int | None = None
        self._light: int | None = None
        self._position: int | None = None

    @property
    def status(self) -> DeviceStatus:
        return DeviceStatus(
            id=self.id,
            connected_at=self._connected_at,
            last_success_at=self._last_success_at,
            last_action=self._last_action,
            blind_state=self._blind_state,
            battery_percent=self._battery,
            light_percent=self._light,
            position_percent=self._position,
        )

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_polling(self) -> None:
        self._scheduler.start(self.refresh)

    async def shutdown(self) -> None:
        await self._scheduler.cancel()

    async def open(self) -> bool:
        self._last_action = Action.OPEN
        self._blind_state = BlindState.OPEN
        return await self._write(OPEN_FRAME, "open")

    async def close(self) -> bool:
        self._last_action = Action.CLOSE
        self._blind_state = BlindState.CLOSED
        return await self._write(CLOSE_FRAME, "close")

    async def stop(self) -> bool:
        self._last_action = Action.STOP
        self._blind_state = BlindState.OPEN
        return await self._write(STOP_FRAME, "stop")

    async def goto_position(self, position: int) -> bool:
        if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position <= 100:
            raise InvalidPositionError(f"Position must be an integer in 0..100, got {position!r}")
        self._last_action = Action.SET_POSITION
        self._blind_state = state_for_position(position)
        return await self._write(encode_set_position(position), f"set position {position}")

    async def refresh(self) -> bool:
        """Run the battery/light/position handshake; ``True`` once all three arrived."""
        success = await self._session(self._read_attempt, "Reading data")
        if success:
            self._last_success_at = self._clock()
            await self._emit()
        return success

    async def _write(self, frame: bytes, label: str) -> bool:
        LOGGER.info("[%s] Requesting %s", self.id, label)
        success = await self._session(lambda: self._write_attempt(frame), f"Writing {label}")
        if success:
            await self._emit()
            self._scheduler.schedule_forced_reads(self.refresh)
        return success

    async def _session(self, attempt: Callable[[], Awaitable[bool]], label: str) -> bool:
        async with self._lock:
            self.session_state = SessionState.ACQUIRING_LINK
            await self._arbiter.wait_acquire(self, label=self.id, on_busy=self._enter_retry_wait)
            try:
                outcome = await self._retry.run(
                    attempt,
                    label=f"[{self.id}] {label}",
                    on_wait=self._enter_retry_wait,
                )
            finally:
                self._arbiter.release(self)
                self.session_state = SessionState.IDLE
            return outcome.success

    def _enter_retry_wait(self) -> None:
        self.session_state = SessionState.RETRY_WAIT

    async def _connect(self) -> None:
        await self._link.connect()
        self._connected_at = self._clock()
        self.session_state = SessionState.CONNECTED
        LOGGER.info("[%s] AM43 connected", self.id)

    async def _disconnect(self, *, grace: bool) -> None:
        self.session_state = SessionState.DISCONNECTING
        if grace and self._disconnect_grace_s > 0:
            await asyncio.sleep(self._disconnect_grace_s)
        try:
            await self._link.disconnect()
        except TransportError as exc:
            LOGGER.warning("[%s] Disconnect failed: %s", self.id, exc)
        LOGGER.debug("[%s] disconnected", self.id)

    async def _write_attempt(self, frame: bytes) -> bool:
        connected = False
        written = False
        try:
            await self._connect()
            connected = True
            characteristic = await self._link.discover_characteristic(SERVICE_UUID, NOTIFY_CHAR_UUID)
            await self._link.write(characteristic, frame)
            written = True
            LOGGER.info("[%s] key written: %s", self.id, frame.hex())
        except TransportError as exc:
            LOGGER.warning("[%s] Write failed: %s", self.id, exc)
        finally:
            await self._disconnect(grace=connected)
        return written

    async def _read_attempt(self) -> bool:
        decoder = NotificationDecoder()
        frames: asyncio.Queue[bytes] = asyncio.Queue()
        connected = False
        try:
            await self._connect()
            connected = True
            characteristic = await self._link.discover_characteristic(SERVICE_UUID, NOTIFY_CHAR_UUID)
            await self._link.subscribe(characteristic, frames.put_nowait)
            self.session_state = SessionState.IN_HANDSHAKE
            await self._link.write(characteristic, BATTERY_REQUEST_FRAME)
            while not decoder.complete:
                frame = await asyncio.wait_for(frames.get(), timeout=self._notify_timeout_s)
                LOGGER.debug("[%s] Notification data: %s", self.id, frame.hex())
                step = decoder.feed(frame)
                self._apply(step)
                if step.next_request is not None and not decoder.complete:
                    await self._link.write(characteristic, step.next_request)
            LOGGER.info("[%s] Reading data completed", self.id)
            await self._link.unsubscribe(characteristic)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "[%s] Handshake incomplete, no notification while %s",
                self.id,
                decoder.state.value,
            )
        except TransportError as exc:
            LOGGER.warning("[%s] Read session failed: %s", self.id, exc)
        finally:
            await self._disconnect(grace=connected)
        return decoder.complete

    def _apply(self, step: DecodeStep) -> None:
        if step.kind is NotificationKind.BATTERY:
            self._battery = step.value
            LOGGER.info("[%s] Bat: %s%%", self.id, step.value)
        elif step.kind is NotificationKind.LIGHT:
            self._light = step.value
            LOGGER.info("[%s] Light: %s%%", self.id, step.value)
        elif step.kind is NotificationKind.POSITION:
            self._position = step.value
            self._blind_state = state_for_position(step.value)
            LOGGER.info("[%s] Position: %s%%", self.id, step.value)

    async def _emit(self) -> None:
        snapshot = self.status
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("[%s] State listener failed", self.id)
