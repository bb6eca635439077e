"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path

import typer

from am43ctl.core.codec import frame_for_action
from am43ctl.core.commands import parse_command
from am43ctl.core.config import load_settings, normalize_base_topic
from am43ctl.core.device_match import validate_device_id
from am43ctl.core.errors import Am43Error
from am43ctl.core.model import HttpSettings, MqttSettings, Settings
from am43ctl.core.service import Am43Service

app = typer.Typer(help="AM43 BLE blind control with MQTT and HTTP bridges")


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service(settings: Settings) -> Am43Service:
    return Am43Service(settings)


def _merge_settings(
    base: Settings,
    *,
    macs: list[str] | None,
    mqtt_url: str | None,
    mqtt_base_topic: str | None,
    mqtt_username: str | None,
    mqtt_password: str | None,
    http_port: int | None,
    http_host: str | None,
    poll: bool | None,
    fail_time: float | None,
) -> Settings:
    settings = base
    if macs:
        settings = replace(settings, devices=tuple(validate_device_id(mac) for mac in macs))

    if mqtt_url or settings.mqtt is not None:
        mqtt = settings.mqtt or MqttSettings(url=mqtt_url or "")
        mqtt = replace(
            mqtt,
            url=mqtt_url or mqtt.url,
            base_topic=normalize_base_topic(mqtt_base_topic or mqtt.base_topic),
            username=mqtt_username or mqtt.username,
            password=mqtt_password or mqtt.password,
        )
        settings = replace(settings, mqtt=mqtt)

    if http_port is not None or settings.http is not None:
        http = settings.http or HttpSettings(port=http_port or 0)
        http = replace(http, port=http_port or http.port, host=http_host or http.host)
        settings = replace(settings, http=http)

    if poll is not None:
        settings = replace(settings, poll=poll)
    if fail_time is not None:
        settings = replace(settings, fail_time_s=fail_time)
    return settings


@app.command("run")
def run_bridges(
    macs: list[str] | None = typer.Argument(None, help="Blind MAC addresses to connect to"),
    config: Path | None = typer.Option(None, "--config", "-c", envvar="AM43_CONFIG", help="YAML config file"),
    mqtt_url: str | None = typer.Option(None, "--mqtt-url", "--url", envvar="AM43_MQTT_URL", help="MQTT broker URL"),
    mqtt_base_topic: str | None = typer.Option(
        None, "--mqtt-base-topic", "--topic", envvar="AM43_MQTT_BASE_TOPIC", help="Base topic (default homeassistant)"
    ),
    mqtt_username: str | None = typer.Option(None, "--mqtt-username", "-u", envvar="AM43_MQTT_USERNAME"),
    mqtt_password: str | None = typer.Option(None, "--mqtt-password", "-p", envvar="AM43_MQTT_PASSWORD"),
    ask_password: bool = typer.Option(False, "--ask-password", help="Prompt for the MQTT password"),
    http_port: int | None = typer.Option(None, "--http-port", "-l", envvar="AM43_HTTP_PORT", help="Port for the HTTP server"),
    http_host: str | None = typer.Option(None, "--http-host", envvar="AM43_HTTP_HOST"),
    poll: bool | None = typer.Option(
        None, "--poll/--no-poll", envvar="AM43_POLL", help="Poll every 3 minutes instead of every 10-20 minutes"
    ),
    fail_time: float | None = typer.Option(
        None, "--fail-time", "-f", envvar="AM43_FAIL_TIME", help="Seconds without a successful read before exiting"
    ),
    debug: bool = typer.Option(False, "--debug", "-d", envvar="AM43_DEBUG", help="Enable debug logging"),
) -> None:
    """Discover the blinds and bridge them to MQTT and/or HTTP until the watchdog fires."""
    _configure_logging(debug)
    try:
        settings = _merge_settings(
            load_settings(config),
            macs=macs,
            mqtt_url=mqtt_url,
            mqtt_base_topic=mqtt_base_topic,
            mqtt_username=mqtt_username,
            mqtt_password=mqtt_password,
            http_port=http_port,
            http_host=http_host,
            poll=poll,
            fail_time=fail_time,
        )
        if ask_password and settings.mqtt is not None and not settings.mqtt.password:
            password = typer.prompt("MQTT password", hide_input=True)
            settings = replace(settings, mqtt=replace(settings.mqtt, password=password))
        if settings.mqtt is None and settings.http is None:
            typer.echo("Error: Neither --http-port nor --mqtt-url supplied, nothing to do", err=True)
            raise typer.Exit(code=1)
        if not settings.devices:
            typer.echo("Error: No MACs defined", err=True)
            raise typer.Exit(code=1)

        code = asyncio.run(_build_service(settings).run())
    except Am43Error as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if code:
        raise typer.Exit(code=code)


@app.command("send")
def send_command(
    mac: str,
    action: str = typer.Argument(..., help="open, close, stop or position"),
    position: str | None = typer.Argument(None, help="Target position 0..100 for 'position'"),
    config: Path | None = typer.Option(None, "--config", "-c", envvar="AM43_CONFIG"),
    debug: bool = typer.Option(False, "--debug", "-d", envvar="AM43_DEBUG"),
) -> None:
    """Send a single command to one blind."""
    _configure_logging(debug)
    try:
        command = parse_command(action, position)
        service = _build_service(load_settings(config))
        status = asyncio.run(service.send_command(mac, command))
        typer.echo(f"Sent {command.action.value.lower()} to {status.id}")
    except Am43Error as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read_status(
    mac: str,
    config: Path | None = typer.Option(None, "--config", "-c", envvar="AM43_CONFIG"),
    debug: bool = typer.Option(False, "--debug", "-d", envvar="AM43_DEBUG"),
) -> None:
    """Read battery, light and position from one blind."""
    _configure_logging(debug)
    try:
        service = _build_service(load_settings(config))
        status = asyncio.run(service.read_status(mac))
        typer.echo(json.dumps(status.to_payload()))
    except Am43Error as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("encode")
def encode_frame(
    action: str = typer.Argument(..., help="open, close, stop or position"),
    position: str | None = typer.Argument(None),
) -> None:
    """Print the frame a command would write, without touching the radio."""
    try:
        command = parse_command(action, position)
        typer.echo(frame_for_action(command.action, command.position).hex())
    except Am43Error as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
