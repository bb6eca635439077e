"""HTTP bridge exposing device status and commands via FastAPI."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Path

from am43ctl.core.commands import dispatch
from am43ctl.core.device import Device
from am43ctl.core.errors import Am43Error
from am43ctl.core.model import Action, Command, HttpSettings

LOGGER = logging.getLogger(__name__)


async def _run_command(device: Device, command: Command) -> None:
    try:
        await dispatch(device, command)
    except Am43Error as exc:
        LOGGER.warning("[%s] Command failed: %s", device.id, exc)


def create_app(devices: Mapping[str, Device]) -> FastAPI:
    app = FastAPI(title="am43ctl")

    def require_device(device_id: str) -> Device:
        device = devices.get(device_id)
        if device is None:
            raise HTTPException(status_code=404, detail=f"Unknown device '{device_id}'")
        return device

    def schedule(device_id: str, command: Command, background: BackgroundTasks) -> dict[str, Any]:
        device = require_device(device_id)
        LOGGER.info("[%s] requesting AM43 %s", device.id, command.action.value.lower())
        background.add_task(_run_command, device, command)
        return {"id": device.id, "action": command.action.value, "position": command.position}

    @app.get("/")
    async def list_status() -> dict[str, dict[str, Any]]:
        return {device_id: device.status.to_payload() for device_id, device in devices.items()}

    @app.get("/{device_id}")
    async def get_status(device_id: str) -> dict[str, Any]:
        return require_device(device_id).status.to_payload()

    @app.post("/{device_id}/open")
    async def open_blind(device_id: str, background: BackgroundTasks) -> dict[str, Any]:
        return schedule(device_id, Command(action=Action.OPEN), background)

    @app.post("/{device_id}/close")
    async def close_blind(device_id: str, background: BackgroundTasks) -> dict[str, Any]:
        return schedule(device_id, Command(action=Action.CLOSE), background)

    @app.post("/{device_id}/stop")
    async def stop_blind(device_id: str, background: BackgroundTasks) -> dict[str, Any]:
        return schedule(device_id, Command(action=Action.STOP), background)

    @app.post("/{device_id}/position/{position}")
    async def set_position(
        device_id: str,
        background: BackgroundTasks,
        position: int = Path(..., ge=0, le=100),
    ) -> dict[str, Any]:
        return schedule(device_id, Command(action=Action.SET_POSITION, position=position), background)

    return app


async def serve(devices: Mapping[str, Device], settings: HttpSettings) -> None:
    config = uvicorn.Config(
        create_app(devices),
        host=settings.host,
        port=settings.port,
        log_level="info",
        lifespan="off",
    )
    LOGGER.info("listening on %s:%d", settings.host, settings.port)
    await uvicorn.Server(config).serve()
