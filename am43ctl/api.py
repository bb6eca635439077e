"""Stable public API for building tooling on top of am43ctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from am43ctl.core.arbiter import LinkArbiter
from am43ctl.core.codec import encode_set_position, frame_for_action, verify_checksum
from am43ctl.core.commands import parse_command
from am43ctl.core.decoder import NotificationDecoder
from am43ctl.core.device import Device
from am43ctl.core.errors import (
    Am43Error,
    CommandParseError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceDiscoveryError,
    DeviceSelectionError,
    InvalidPositionError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from am43ctl.core.model import Action, BlindState, Command, DeviceStatus, Settings
from am43ctl.core.retry import RetryPolicy
from am43ctl.core.scheduler import PollScheduler
from am43ctl.core.service import Am43Service, LinkFactory
from am43ctl.transports.base import BlindLink
from am43ctl.transports.ble_gatt import BleakLink

__all__ = [
    "Am43Error",
    "CommandParseError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceDiscoveryError",
    "DeviceSelectionError",
    "InvalidPositionError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "Action",
    "BlindState",
    "Command",
    "DeviceStatus",
    "Settings",
    "Device",
    "LinkArbiter",
    "RetryPolicy",
    "PollScheduler",
    "NotificationDecoder",
    "BlindLink",
    "BleakLink",
    "encode_set_position",
    "frame_for_action",
    "verify_checksum",
    "Client",
]


class Client:
    """Public client for one-shot blind operations.

    A `Client` instance wraps the service so that third-party tools can send a
    single command or read a single status without running the MQTT/HTTP
    bridges. All calls share one `LinkArbiter`, so concurrent calls from the
    same client never open two radio sessions at once.
    """

    def __init__(self, *, settings: Settings | None = None, link_factory: LinkFactory | None = None) -> None:
        self._service = Am43Service(settings, link_factory=link_factory)

    async def send(self, address: str, action: str, position: str | None = None) -> DeviceStatus:
        return await self._service.send_command(address, parse_command(action, position))

    async def read(self, address: str) -> DeviceStatus:
        return await self._service.read_status(address)
