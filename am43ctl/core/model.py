"""Core data models used across devices, bridges, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Action(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    STOP = "STOP"
    SET_POSITION = "SET_POSITION"
    NONE = "NONE"


class BlindState(str, Enum):
    UNKNOWN = "UNKNOWN"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class SessionState(str, Enum):
    IDLE = "IDLE"
    ACQUIRING_LINK = "ACQUIRING_LINK"
    RETRY_WAIT = "RETRY_WAIT"
    CONNECTED = "CONNECTED"
    IN_HANDSHAKE = "IN_HANDSHAKE"
    DISCONNECTING = "DISCONNECTING"


def state_for_position(position: int | None) -> BlindState:
    """A blind reporting 100% is fully closed; anything else counts as open."""
    if position == 100:
        return BlindState.CLOSED
    return BlindState.OPEN


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class DeviceStatus:
    id: str
    connected_at: datetime | None = None
    last_success_at: datetime | None = None
    last_action: Action = Action.NONE
    blind_state: BlindState = BlindState.UNKNOWN
    battery_percent: int | None = None
    light_percent: int | None = None
    position_percent: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready mapping published to MQTT and served over HTTP."""
        return {
            "id": self.id,
            "lastconnect": _isoformat(self.connected_at),
            "lastsuccess": _isoformat(self.last_success_at),
            "lastaction": self.last_action.value,
            "state": self.blind_state.value,
            "battery": self.battery_percent,
            "light": self.light_percent,
            "position": self.position_percent,
        }


@dataclass(frozen=True)
class Command:
    action: Action
    position: int | None = None


@dataclass(frozen=True)
class MqttSettings:
    url: str
    base_topic: str = "homeassistant"
    username: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class HttpSettings:
    port: int
    host: str = "0.0.0.0"


@dataclass(frozen=True)
class Settings:
    devices: tuple[str, ...] = ()
    mqtt: MqttSettings | None = None
    http: HttpSettings | None = None
    poll: bool = False
    fail_time_s: float = 0.0
    max_retries: int = 30
    retry_delay_s: float = 1.0
    discovery_timeout_s: float = 0.0
