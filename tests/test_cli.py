from __future__ import annotations

from typer.testing import CliRunner

from am43ctl import cli
from am43ctl.core.errors import DeviceSelectionError
from am43ctl.core.model import Action, BlindState, DeviceStatus


class FakeService:
    instances: list["FakeService"] = []

    def __init__(self, settings) -> None:
        self.settings = settings
        self.commands: list[tuple[str, object]] = []
        FakeService.instances.append(self)

    async def run(self) -> int:
        return 0

    async def send_command(self, address, command):
        self.commands.append((address, command))
        return DeviceStatus(id="02fc98a9446b", last_action=command.action, blind_state=BlindState.CLOSED)

    async def read_status(self, address):
        return DeviceStatus(id="02fc98a9446b", battery_percent=80, position_percent=45)


runner = CliRunner()


def _isolate(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    for name in ("AM43_MQTT_URL", "AM43_HTTP_PORT", "AM43_CONFIG", "AM43_POLL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "Am43Service", FakeService)
    FakeService.instances.clear()


def test_encode_command() -> None:
    result = runner.invoke(cli.app, ["encode", "close"])
    assert result.exit_code == 0
    assert "00ff00009a0d0164f2" in result.stdout


def test_encode_position() -> None:
    result = runner.invoke(cli.app, ["encode", "position", "45"])
    assert result.exit_code == 0
    assert "00ff00009a0d012dbb" in result.stdout


def test_encode_invalid_position_is_clean() -> None:
    result = runner.invoke(cli.app, ["encode", "position", "200"])
    assert result.exit_code == 1
    assert "Error:" in result.stderr
    assert "Traceback" not in result.stderr


def test_run_without_bridge_fails(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    result = runner.invoke(cli.app, ["run", "02:FC:98:A9:44:6B"])
    assert result.exit_code == 1
    assert "nothing to do" in result.stderr
    assert FakeService.instances == []


def test_run_without_macs_fails(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    result = runner.invoke(cli.app, ["run", "--http-port", "3000"])
    assert result.exit_code == 1
    assert "No MACs defined" in result.stderr


def test_run_merges_options(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    result = runner.invoke(
        cli.app,
        ["run", "02:FC:98:A9:44:6B", "--mqtt-url", "mqtt://broker:1883", "--topic", "home", "--poll", "--fail-time", "600"],
    )
    assert result.exit_code == 0
    settings = FakeService.instances[0].settings
    assert settings.devices == ("02fc98a9446b",)
    assert settings.mqtt.url == "mqtt://broker:1883"
    assert settings.mqtt.base_topic == "home/"
    assert settings.poll is True
    assert settings.fail_time_s == 600
    assert settings.http is None


def test_run_propagates_watchdog_exit_code(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)

    class ExitingService(FakeService):
        async def run(self) -> int:
            return 3

    monkeypatch.setattr(cli, "Am43Service", ExitingService)
    result = runner.invoke(cli.app, ["run", "02fc98a9446b", "--http-port", "3000"])
    assert result.exit_code == 3


def test_send_command(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    result = runner.invoke(cli.app, ["send", "02:FC:98:A9:44:6B", "close"])
    assert result.exit_code == 0
    assert "Sent close to 02fc98a9446b" in result.stdout
    address, command = FakeService.instances[0].commands[0]
    assert command.action is Action.CLOSE


def test_read_command_prints_json(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    result = runner.invoke(cli.app, ["read", "02:FC:98:A9:44:6B"])
    assert result.exit_code == 0
    assert '"position": 45' in result.stdout


def test_send_error_is_clean(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)

    class FailingService(FakeService):
        async def send_command(self, address, command):
            raise DeviceSelectionError("'kitchen' is not a Bluetooth address")

    monkeypatch.setattr(cli, "Am43Service", FailingService)
    result = runner.invoke(cli.app, ["send", "kitchen", "open"])
    assert result.exit_code == 1
    assert "Error: 'kitchen' is not a Bluetooth address" in result.stderr
    assert "Traceback" not in result.stderr


def test_run_prompts_for_mqtt_password(monkeypatch, tmp_path) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.delenv("AM43_MQTT_PASSWORD", raising=False)
    result = runner.invoke(
        cli.app,
        ["run", "02:FC:98:A9:44:6B", "--mqtt-url", "mqtt://broker:1883", "-u", "blinds", "--ask-password"],
        input="hunter2\n",
    )
    assert result.exit_code == 0
    mqtt = FakeService.instances[0].settings.mqtt
    assert mqtt.username == "blinds"
    assert mqtt.password == "hunter2"
