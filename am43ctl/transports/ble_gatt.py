"""BLE GATT transport implementation backed by bleak."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from am43ctl.core.device_match import match_wanted
from am43ctl.core.errors import (
    DeviceDiscoveryError,
    TransportConnectError,
    TransportSendError,
)
from am43ctl.transports.base import NotificationCallback

LOGGER = logging.getLogger(__name__)

SCAN_WINDOW_S = 10.0


class BleakLink:
    """One peripheral reached through ``BleakClient``.

    A fresh client is created for every connect so that a half-closed link
    from a failed session never leaks into the next attempt.
    """

    def __init__(self, target: BLEDevice | str, *, timeout_s: float = 10.0) -> None:
        self._target = target
        self._timeout_s = timeout_s
        self._client: BleakClient | None = None

    def _require_client(self) -> BleakClient:
        if self._client is None or not self._client.is_connected:
            raise TransportConnectError("BLE link is not connected")
        return self._client

    async def connect(self) -> None:
        client = BleakClient(self._target, timeout=self._timeout_s)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportConnectError(f"BLE connect failed for {self._target}: {exc}") from exc
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {self._target}")
        self._client = client

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportConnectError(f"BLE disconnect failed: {exc}") from exc

    async def discover_characteristic(self, service_uuid: str, char_uuid: str) -> Any:
        client = self._require_client()
        service = client.services.get_service(service_uuid)
        characteristic = service.get_characteristic(char_uuid) if service is not None else None
        if characteristic is None:
            raise TransportSendError(
                f"Characteristic {char_uuid} not found in service {service_uuid}"
            )
        return characteristic

    async def subscribe(self, characteristic: Any, callback: NotificationCallback) -> None:
        client = self._require_client()

        def _notify_handler(_: Any, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await client.start_notify(characteristic, _notify_handler)
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportSendError(f"BLE subscribe failed: {exc}") from exc

    async def unsubscribe(self, characteristic: Any) -> None:
        client = self._require_client()
        try:
            await client.stop_notify(characteristic)
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportSendError(f"BLE unsubscribe failed: {exc}") from exc

    async def write(self, target: Any, payload: bytes) -> None:
        client = self._require_client()
        try:
            await client.write_gatt_char(target, payload, response=True)
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc


async def discover_devices(
    wanted_ids: Iterable[str],
    *,
    timeout_s: float = 0.0,
) -> dict[str, BLEDevice]:
    """Scan until every wanted id has been seen.

    ``timeout_s`` of zero scans forever; otherwise ``DeviceDiscoveryError`` is
    raised once the deadline passes with devices still missing.
    """
    wanted = set(wanted_ids)
    found: dict[str, BLEDevice] = {}
    ignored: set[str] = set()
    deadline = time.monotonic() + timeout_s if timeout_s > 0 else None

    LOGGER.info("scanning for %d device(s) %s", len(wanted), sorted(wanted))
    while not wanted.issubset(found):
        try:
            scanned = await BleakScanner.discover(timeout=SCAN_WINDOW_S)
        except (BleakError, OSError) as exc:
            raise DeviceDiscoveryError(f"BLE scan failed: {exc}") from exc

        by_address = {device.address: device for device in scanned}
        matched, skipped = match_wanted(by_address, wanted)
        for device_id, address in matched.items():
            if device_id not in found:
                LOGGER.info("discovered %s", device_id)
                found[device_id] = by_address[address]
        for address in skipped:
            if address not in ignored:
                ignored.add(address)
                LOGGER.debug("Found %s but it was not requested", address)

        if deadline is not None and time.monotonic() >= deadline and not wanted.issubset(found):
            missing = ", ".join(sorted(wanted - set(found)))
            raise DeviceDiscoveryError(f"Devices not found before timeout: {missing}")

    LOGGER.info("all expected devices found, stopping scan")
    return found
