"""AM43 command frame encoding.

Every frame is the fixed header ``00 ff 00 00`` followed by a body of the form
``9a <command> <length> <data...> <checksum>`` where the checksum is the XOR
fold of the body bytes that precede it. The fixed frames below are kept as
literal captures so they can be compared byte for byte with the device docs.
"""

from __future__ import annotations

from functools import reduce

from am43ctl.core.model import Action

SERVICE_UUID = "0000fe50-0000-1000-8000-00805f9b34fb"
NOTIFY_CHAR_UUID = "0000fe51-0000-1000-8000-00805f9b34fb"
# ATT value handle of the fe51 characteristic; bleak addresses it by UUID instead
WRITE_HANDLE = 0x000E

FRAME_HEADER = bytes.fromhex("00ff0000")
SET_POSITION_BODY_PREFIX = bytes.fromhex("9a0d01")

OPEN_FRAME = bytes.fromhex("00ff00009a0d010096")
CLOSE_FRAME = bytes.fromhex("00ff00009a0d0164f2")
STOP_FRAME = bytes.fromhex("00ff00009a0a01cc5d")

BATTERY_REQUEST_FRAME = bytes.fromhex("00ff00009aa2010138")
LIGHT_REQUEST_FRAME = bytes.fromhex("00ff00009aaa010130")
POSITION_REQUEST_FRAME = bytes.fromhex("00ff00009aa701013d")

_FIXED_ACTION_FRAMES = {
    Action.OPEN: OPEN_FRAME,
    Action.CLOSE: CLOSE_FRAME,
    Action.STOP: STOP_FRAME,
}


def xor_checksum(data: bytes) -> int:
    return reduce(lambda crc, byte: crc ^ byte, data[1:], data[0]) if data else 0


def encode_set_position(position: int) -> bytes:
    """Build the templated set-position frame.

    Range checking is left to the caller; the position is masked to one byte.
    """
    body = SET_POSITION_BODY_PREFIX + bytes([position & 0xFF])
    return FRAME_HEADER + body + bytes([xor_checksum(body)])


def verify_checksum(frame: bytes) -> bool:
    """Check the trailing checksum of a framed command or notification."""
    body = frame[len(FRAME_HEADER):] if frame.startswith(FRAME_HEADER) else frame
    if len(body) < 2:
        return False
    return xor_checksum(body[:-1]) == body[-1]


def frame_for_action(action: Action, position: int | None = None) -> bytes:
    if action is Action.SET_POSITION:
        if position is None:
            raise ValueError("SET_POSITION requires a position")
        return encode_set_position(position)
    frame = _FIXED_ACTION_FRAMES.get(action)
    if frame is None:
        raise ValueError(f"No frame for action {action.value}")
    return frame
