"""Battery -> light -> position notification handshake."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from am43ctl.core.codec import LIGHT_REQUEST_FRAME, POSITION_REQUEST_FRAME

LOGGER = logging.getLogger(__name__)

IDENTIFIER_OFFSET = 1


class NotificationKind(str, Enum):
    BATTERY = "battery"
    LIGHT = "light"
    POSITION = "position"


class HandshakeState(str, Enum):
    AWAITING_BATTERY = "AWAITING_BATTERY"
    AWAITING_LIGHT = "AWAITING_LIGHT"
    AWAITING_POSITION = "AWAITING_POSITION"
    COMPLETE = "COMPLETE"


_KIND_BY_IDENTIFIER = {
    0xA2: NotificationKind.BATTERY,
    0xAA: NotificationKind.LIGHT,
    0xA7: NotificationKind.POSITION,
}

_PAYLOAD_OFFSET = {
    NotificationKind.BATTERY: 7,
    NotificationKind.LIGHT: 4,
    NotificationKind.POSITION: 5,
}

# expected state -> (kind that satisfies it, next state, follow-up request)
_TRANSITIONS = {
    HandshakeState.AWAITING_BATTERY: (
        NotificationKind.BATTERY,
        HandshakeState.AWAITING_LIGHT,
        LIGHT_REQUEST_FRAME,
    ),
    HandshakeState.AWAITING_LIGHT: (
        NotificationKind.LIGHT,
        HandshakeState.AWAITING_POSITION,
        POSITION_REQUEST_FRAME,
    ),
    HandshakeState.AWAITING_POSITION: (
        NotificationKind.POSITION,
        HandshakeState.COMPLETE,
        None,
    ),
}


@dataclass(frozen=True)
class DecodeStep:
    kind: NotificationKind | None
    value: int | None = None
    next_request: bytes | None = None


@dataclass
class NotificationDecoder:
    """Sequential decoder for one read cycle.

    Values are recorded for any recognized notification. The state only
    advances when the expected kind arrives, and only an in-order answer
    produces the next request. ``complete`` depends on the flags alone, so
    out-of-order arrivals still finish the cycle once all three are seen.
    """

    state: HandshakeState = HandshakeState.AWAITING_BATTERY
    values: dict[NotificationKind, int] = field(default_factory=dict)

    @property
    def battery_ok(self) -> bool:
        return NotificationKind.BATTERY in self.values

    @property
    def light_ok(self) -> bool:
        return NotificationKind.LIGHT in self.values

    @property
    def position_ok(self) -> bool:
        return NotificationKind.POSITION in self.values

    @property
    def complete(self) -> bool:
        return self.battery_ok and self.light_ok and self.position_ok

    def feed(self, frame: bytes) -> DecodeStep:
        if len(frame) <= IDENTIFIER_OFFSET:
            LOGGER.debug("Ignoring short notification %s", frame.hex())
            return DecodeStep(kind=None)

        kind = _KIND_BY_IDENTIFIER.get(frame[IDENTIFIER_OFFSET])
        if kind is None:
            LOGGER.debug(
                "Ignoring notification with unknown identifier %02x: %s",
                frame[IDENTIFIER_OFFSET],
                frame.hex(),
            )
            return DecodeStep(kind=None)

        offset = _PAYLOAD_OFFSET[kind]
        if len(frame) <= offset:
            LOGGER.warning("Truncated %s notification: %s", kind.value, frame.hex())
            return DecodeStep(kind=None)

        value = frame[offset]
        self.values[kind] = value

        next_request = None
        transition = _TRANSITIONS.get(self.state)
        if transition is not None and transition[0] is kind:
            self.state = transition[1]
            next_request = transition[2]
        else:
            LOGGER.debug("Out of order %s notification while %s", kind.value, self.state.value)

        if self.complete:
            self.state = HandshakeState.COMPLETE
        return DecodeStep(kind=kind, value=value, next_request=next_request)
