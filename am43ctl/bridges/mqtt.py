"""MQTT bridge with Home Assistant discovery, built on aiomqtt."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlparse

import aiomqtt

from am43ctl.core.commands import dispatch, parse_action, parse_position
from am43ctl.core.config import normalize_base_topic
from am43ctl.core.device import Device
from am43ctl.core.errors import Am43Error, CommandParseError
from am43ctl.core.model import Command, DeviceStatus, MqttSettings

LOGGER = logging.getLogger(__name__)

COVER_TOPIC = "cover/"
SENSOR_TOPIC = "sensor/"
PAYLOAD_ONLINE = "Online"
PAYLOAD_OFFLINE = "Offline"
RECONNECT_DELAY_S = 5.0


def discovery_messages(device_id: str, base_topic: str) -> dict[str, dict[str, Any]]:
    """Retained Home Assistant discovery configs, keyed by topic."""
    base_topic = normalize_base_topic(base_topic)
    device_topic = f"{base_topic}{COVER_TOPIC}{device_id}"
    availability = {
        "availability_topic": f"{device_topic}/connection",
        "payload_available": PAYLOAD_ONLINE,
        "payload_not_available": PAYLOAD_OFFLINE,
    }
    device_info = {
        "identifiers": f"am43_{device_id}",
        "name": device_id,
        "manufacturer": "Generic AM43",
    }

    cover = {
        "name": device_id,
        "command_topic": f"{device_topic}/set",
        "position_topic": f"{device_topic}/state",
        "set_position_topic": f"{device_topic}/setposition",
        "position_open": 0,
        "position_closed": 100,
        **availability,
        "payload_open": "OPEN",
        "payload_close": "CLOSE",
        "payload_stop": "STOP",
        "position_template": "{{value_json['position']}}",
        "unique_id": f"am43_{device_id}_cover",
        "device": device_info,
    }
    battery = {
        "name": f"{device_id} Battery",
        "state_topic": f"{device_topic}/state",
        **availability,
        "unique_id": f"am43_{device_id}_battery_sensor",
        "device": device_info,
        "value_template": "{{value_json['battery']}}",
        "device_class": "battery",
        "unit_of_measurement": "%",
    }
    light = {
        "name": f"{device_id} Light",
        "state_topic": f"{device_topic}/state",
        **availability,
        "unique_id": f"am43_{device_id}_light_sensor",
        "device": device_info,
        "value_template": "{{value_json['light']}}",
        "unit_of_measurement": "%",
    }
    return {
        f"{device_topic}/config": cover,
        f"{base_topic}{SENSOR_TOPIC}{device_id}_battery/config": battery,
        f"{base_topic}{SENSOR_TOPIC}{device_id}_light/config": light,
    }


class MqttBridge:
    """Relays commands from MQTT to one device and publishes its state changes."""

    def __init__(self, device: Device, settings: MqttSettings, *, reconnect_delay_s: float | None = None) -> None:
        self.device = device
        self.settings = settings
        self.reconnect_delay_s = RECONNECT_DELAY_S if reconnect_delay_s is None else reconnect_delay_s
        self.base_topic = normalize_base_topic(settings.base_topic)
        self.device_topic = f"{self.base_topic}{COVER_TOPIC}{device.id}"
        self._client: aiomqtt.Client | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def connection_topic(self) -> str:
        return f"{self.device_topic}/connection"

    def parse_message(self, topic: str, payload: bytes) -> Command | None:
        """Map an inbound message to a command; invalid payloads yield ``None``."""
        text = payload.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            if topic == f"{self.device_topic}/set":
                return parse_action(text)
            if topic == f"{self.device_topic}/setposition":
                return parse_position(text)
        except CommandParseError as exc:
            LOGGER.warning("[%s] Rejected MQTT command on %s: %s", self.device.id, topic, exc)
            return None
        LOGGER.debug("[%s] Ignoring message on %s", self.device.id, topic)
        return None

    def handle_message(self, topic: str, payload: bytes) -> asyncio.Task[Any] | None:
        LOGGER.debug("[%s] mqtt message received %s, %r", self.device.id, topic, payload)
        command = self.parse_message(topic, payload)
        if command is None:
            return None
        LOGGER.info("[%s] requesting %s", self.device.id, command.action.value.lower())
        task = asyncio.get_running_loop().create_task(self._run_command(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_command(self, command: Command) -> None:
        try:
            await dispatch(self.device, command)
        except Am43Error as exc:
            LOGGER.warning("[%s] Command failed: %s", self.device.id, exc)

    async def publish_state(self, status: DeviceStatus) -> None:
        if self._client is None:
            LOGGER.debug("[%s] MQTT not connected, dropping state update", self.device.id)
            return
        payload = json.dumps(status.to_payload())
        LOGGER.debug("[%s] state changed received: %s", self.device.id, payload)
        try:
            await self._client.publish(f"{self.device_topic}/state", payload, qos=0, retain=True)
        except aiomqtt.MqttError as exc:
            LOGGER.warning("[%s] MQTT publish error: %s", self.device.id, exc)

    def _client_for(self) -> aiomqtt.Client:
        url = urlparse(self.settings.url)
        tls = url.scheme in {"mqtts", "ssl"}
        return aiomqtt.Client(
            hostname=url.hostname or "localhost",
            port=url.port or (8883 if tls else 1883),
            username=self.settings.username or url.username,
            password=self.settings.password or url.password,
            will=aiomqtt.Will(
                topic=self.connection_topic,
                payload=PAYLOAD_OFFLINE,
                qos=0,
                retain=True,
            ),
            tls_params=aiomqtt.TLSParameters() if tls else None,
        )

    async def run(self) -> None:
        """Serve commands until cancelled, reconnecting whenever the broker goes away."""
        self.device.add_listener(self.publish_state)
        try:
            while True:
                try:
                    await self._serve()
                except aiomqtt.MqttError as exc:
                    LOGGER.warning(
                        "[%s] mqtt connection lost: %s, reconnecting in %.0fs",
                        self.device.id,
                        exc,
                        self.reconnect_delay_s,
                    )
                finally:
                    self._client = None
                await asyncio.sleep(self.reconnect_delay_s)
        finally:
            self.device.remove_listener(self.publish_state)
            LOGGER.info("[%s] mqtt closed", self.device.id)

    async def _serve(self) -> None:
        async with self._client_for() as client:
            self._client = client
            for topic, config in discovery_messages(self.device.id, self.base_topic).items():
                await client.publish(topic, json.dumps(config), qos=0, retain=True)
            await client.publish(self.connection_topic, PAYLOAD_ONLINE, qos=0, retain=True)
            await client.subscribe(f"{self.device_topic}/set")
            await client.subscribe(f"{self.device_topic}/setposition")
            LOGGER.info("[%s] mqtt connected, topic %s", self.device.id, self.device_topic)

            async for message in client.messages:
                payload = message.payload
                if isinstance(payload, str):
                    payload = payload.encode("utf-8")
                if not isinstance(payload, (bytes, bytearray)):
                    continue
                self.handle_message(message.topic.value, bytes(payload))
