"""Translation of inbound MQTT/HTTP/CLI requests into device operations."""

from __future__ import annotations

from am43ctl.core.device import Device
from am43ctl.core.errors import CommandParseError
from am43ctl.core.model import Action, Command

_ACTIONS_BY_NAME = {
    "open": Action.OPEN,
    "close": Action.CLOSE,
    "stop": Action.STOP,
}


def parse_action(text: str) -> Command:
    action = _ACTIONS_BY_NAME.get(text.strip().lower())
    if action is None:
        allowed = ", ".join(_ACTIONS_BY_NAME)
        raise CommandParseError(f"Unknown action '{text}'. Allowed: {allowed}")
    return Command(action=action)


def parse_position(text: str) -> Command:
    try:
        position = int(text.strip(), 10)
    except ValueError:
        raise CommandParseError(f"Position '{text}' is not an integer") from None
    if not 0 <= position <= 100:
        raise CommandParseError(f"Position {position} is outside 0..100")
    return Command(action=Action.SET_POSITION, position=position)


def parse_command(action: str, position: str | None = None) -> Command:
    """Parse a CLI style request: an action name, or ``position`` plus a value."""
    lowered = action.strip().lower()
    if lowered in {"position", "set_position", "setposition"}:
        if position is None:
            raise CommandParseError("A position value is required")
        return parse_position(position)
    return parse_action(action)


async def dispatch(device: Device, command: Command) -> bool:
    if command.action is Action.OPEN:
        return await device.open()
    if command.action is Action.CLOSE:
        return await device.close()
    if command.action is Action.STOP:
        return await device.stop()
    if command.action is Action.SET_POSITION and command.position is not None:
        return await device.goto_position(command.position)
    raise CommandParseError(f"Cannot dispatch {command.action.value}")
