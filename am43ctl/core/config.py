"""Config file loading and validation."""

from __future__ import annotations

import json
import logging
import os
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from am43ctl.core.device_match import validate_device_id
from am43ctl.core.errors import ConfigLoadError, ConfigValidationError, DeviceSelectionError
from am43ctl.core.model import HttpSettings, MqttSettings, Settings

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("am43ctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "am43ctl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def normalize_base_topic(topic: str) -> str:
    topic = topic.strip()
    return topic if topic.endswith("/") else f"{topic}/"


def build_settings(doc: dict[str, Any], source: Path | str = "<config>") -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    mqtt = None
    if "mqtt" in doc:
        mqtt = MqttSettings(
            url=doc["mqtt"]["url"],
            base_topic=normalize_base_topic(doc["mqtt"].get("base_topic", "homeassistant")),
            username=doc["mqtt"].get("username"),
            password=doc["mqtt"].get("password"),
        )

    http = None
    if "http" in doc:
        http = HttpSettings(port=int(doc["http"]["port"]), host=doc["http"].get("host", "0.0.0.0"))

    try:
        devices = tuple(validate_device_id(d) for d in doc.get("devices", []))
    except DeviceSelectionError as exc:
        raise ConfigValidationError(f"Invalid device in {source}: {exc}") from exc

    retries = doc.get("retries", {})
    return Settings(
        devices=devices,
        mqtt=mqtt,
        http=http,
        poll=bool(doc.get("poll", False)),
        fail_time_s=float(doc.get("fail_time_s", 0)),
        max_retries=int(retries.get("max_retries", 30)),
        retry_delay_s=float(retries.get("delay_s", 1.0)),
        discovery_timeout_s=float(doc.get("discovery_timeout_s", 0)),
    )


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from ``path``, or from the default location when it exists."""
    if path is None:
        path = default_config_path()
        if not path.exists():
            LOGGER.debug("No config file at %s, using defaults", path)
            return Settings()
    return build_settings(_read_yaml(path), path)
