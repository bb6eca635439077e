"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from am43ctl.bridges.mqtt import MqttBridge
from am43ctl.bridges.web import serve
from am43ctl.core.arbiter import LinkArbiter
from am43ctl.core.commands import dispatch
from am43ctl.core.device import Device
from am43ctl.core.device_match import address_from_id, validate_device_id
from am43ctl.core.errors import Am43Error, DeviceSelectionError
from am43ctl.core.model import Command, DeviceStatus, Settings
from am43ctl.core.retry import RetryPolicy
from am43ctl.core.scheduler import PollScheduler
from am43ctl.transports.base import BlindLink
from am43ctl.transports.ble_gatt import BleakLink, discover_devices

LOGGER = logging.getLogger(__name__)

WATCHDOG_INTERVAL_S = 60.0
MAX_CHECKS_WITHOUT_SUCCESS = 10
EXIT_NEVER_CONNECTED = 2
EXIT_FAIL_TIME_ELAPSED = 3

LinkFactory = Callable[[Any], BlindLink]
Scanner = Callable[..., Awaitable[Mapping[str, Any]]]


class Watchdog:
    """Decides when the process should give up on the radio.

    Exits with ``EXIT_NEVER_CONNECTED`` once more than ten checks passed
    without any device ever completing a read, and with
    ``EXIT_FAIL_TIME_ELAPSED`` when the newest success across all devices is
    older than ``fail_time_s`` (zero disables that check).
    """

    def __init__(self, fail_time_s: float = 0.0) -> None:
        self.fail_time_s = fail_time_s
        self.checks_without_success = 0

    def check(self, statuses: Iterable[DeviceStatus], now: datetime) -> int | None:
        successes = [s.last_success_at for s in statuses if s.last_success_at is not None]
        if not successes:
            self.checks_without_success += 1
            if self.checks_without_success > MAX_CHECKS_WITHOUT_SUCCESS:
                LOGGER.error("Exiting since no device has ever connected")
                return EXIT_NEVER_CONNECTED
            return None

        last_success = max(successes)
        elapsed = (now - last_success).total_seconds()
        LOGGER.debug("Time since last successful connect: %.0fs", elapsed)
        if self.fail_time_s > 0 and elapsed > self.fail_time_s:
            LOGGER.error("Exiting since max time since last successful connection has elapsed")
            return EXIT_FAIL_TIME_ELAPSED
        return None


class Am43Service:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        link_factory: LinkFactory | None = None,
        scanner: Scanner | None = None,
        arbiter: LinkArbiter | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.link_factory = link_factory or BleakLink
        self.scanner = scanner or discover_devices
        self.arbiter = arbiter or LinkArbiter()
        self.devices: dict[str, Device] = {}

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.settings.max_retries,
            delay_s=self.settings.retry_delay_s,
        )

    def build_device(
        self,
        address: str,
        target: Any | None = None,
        *,
        scheduler: PollScheduler | None = None,
    ) -> Device:
        device = self._new_device(address, target, scheduler=scheduler)
        self.devices[device.id] = device
        return device

    def _new_device(self, address: str, target: Any | None, *, scheduler: PollScheduler | None) -> Device:
        return Device(
            address,
            self.link_factory(target if target is not None else address),
            arbiter=self.arbiter,
            retry=self._retry_policy(),
            scheduler=scheduler or PollScheduler(poll=self.settings.poll),
        )

    async def discover(self) -> dict[str, Device]:
        if not self.settings.devices:
            raise DeviceSelectionError("No MACs defined")
        found = await self.scanner(
            self.settings.devices,
            timeout_s=self.settings.discovery_timeout_s,
        )
        for device_id, ble_device in found.items():
            address = getattr(ble_device, "address", None) or address_from_id(device_id)
            self.build_device(address, ble_device)
        return self.devices

    async def send_command(self, address: str, command: Command) -> DeviceStatus:
        """One-shot command for a single blind, returning the resulting status."""
        device = self._one_shot_device(address)
        try:
            success = await dispatch(device, command)
        finally:
            await device.shutdown()
        if not success:
            raise Am43Error(f"Writing to {device.id} was unsuccessful, giving up")
        return device.status

    async def read_status(self, address: str) -> DeviceStatus:
        device = self._one_shot_device(address)
        try:
            success = await device.refresh()
        finally:
            await device.shutdown()
        if not success:
            raise Am43Error(f"Reading data from {device.id} was unsuccessful, giving up")
        return device.status

    def _one_shot_device(self, address: str) -> Device:
        device_id = validate_device_id(address)
        if ":" not in address:
            address = address_from_id(device_id)
        # one-shot devices are not registered and must not leave forced reads behind
        return self._new_device(address, None, scheduler=PollScheduler(timer=lambda _delay, _job: None))

    async def watch(self, *, interval_s: float = WATCHDOG_INTERVAL_S) -> int:
        watchdog = Watchdog(self.settings.fail_time_s)
        while True:
            await asyncio.sleep(interval_s)
            code = watchdog.check(
                (device.status for device in self.devices.values()),
                datetime.now(timezone.utc),
            )
            if code is not None:
                return code

    async def run(self) -> int:
        """Discover devices, start bridges and polling, and return an exit code."""
        if self.settings.mqtt is None and self.settings.http is None:
            raise Am43Error("Neither an HTTP port nor an MQTT URL was supplied, nothing to do")

        await self.discover()

        tasks: list[asyncio.Task[Any]] = []
        if self.settings.http is not None:
            tasks.append(asyncio.create_task(serve(self.devices, self.settings.http)))
        for device in self.devices.values():
            if self.settings.mqtt is not None:
                tasks.append(asyncio.create_task(MqttBridge(device, self.settings.mqtt).run()))
            device.start_polling()

        watchdog = asyncio.create_task(self.watch())
        try:
            done, _ = await asyncio.wait([watchdog, *tasks], return_when=asyncio.FIRST_COMPLETED)
            if watchdog in done:
                return watchdog.result()
            for task in done:
                task.result()
            return 0
        finally:
            for task in [watchdog, *tasks]:
                task.cancel()
            await asyncio.gather(watchdog, *tasks, return_exceptions=True)
            for device in self.devices.values():
                await device.shutdown()
