"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

NotificationCallback = Callable[[bytes], None]


class BlindLink(Protocol):
    """BLE capability a device session needs from the radio layer."""

    async def connect(self) -> None:
        """Open the central link to the peripheral."""

    async def disconnect(self) -> None:
        """Close the link; must be safe to call when already disconnected."""

    async def discover_characteristic(self, service_uuid: str, char_uuid: str) -> Any:
        """Return an opaque characteristic handle usable by the other calls."""

    async def subscribe(self, characteristic: Any, callback: NotificationCallback) -> None:
        """Deliver every notification payload of ``characteristic`` to ``callback``."""

    async def unsubscribe(self, characteristic: Any) -> None:
        """Stop notifications started by ``subscribe``."""

    async def write(self, target: Any, payload: bytes) -> None:
        """Write ``payload`` with response to a characteristic or attribute handle."""
