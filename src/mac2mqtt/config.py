"""Bridge configuration: YAML file, then MAC2MQTT_* environment overrides."""

from __future__ import annotations

import os
import re
import socket
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, ValidationInfo, field_validator

from mac2mqtt.const import YES_ANSWER
from mac2mqtt.exceptions import ConfigError
from mac2mqtt.logging_abstraction import get_logger

logger = get_logger(__name__)

# interval key -> default seconds; zero or negative values fall back to these
INTERVAL_DEFAULTS: dict[str, float] = {
    "volume_interval": 5,
    "media_interval": 5,
    "battery_interval": 60,
    "cpu_interval": 10,
    "memory_interval": 10,
    "uptime_interval": 60,
    "publicip_interval": 300,
    "disk_interval": 60,
    "display_interval": 120,
    "keepawake_interval": 120,
    "idle_threshold": 300,
    "activity_sample_interval": 0.5,
    "reachability_interval": 30,
    "reconnect_delay": 5,
}

# env var -> config key
ENV_OVERRIDES: dict[str, str] = {
    "MAC2MQTT_MQTT_HOST": "mqtt_ip",
    "MAC2MQTT_MQTT_PORT": "mqtt_port",
    "MAC2MQTT_MQTT_USER": "mqtt_user",
    "MAC2MQTT_MQTT_PASS": "mqtt_password",
    "MAC2MQTT_MQTT_TLS": "mqtt_tls",
    "MAC2MQTT_MQTT_TLS_PORT": "mqtt_tls_port",
    "MAC2MQTT_MQTT_CA_CERT": "mqtt_ca_cert",
    "MAC2MQTT_TOPIC_PREFIX": "topic_prefix",
    "MAC2MQTT_HOSTNAME": "hostname",
    "MAC2MQTT_DISCOVERY": "discovery_enabled",
}

_HOSTNAME_STRIP = re.compile(r"[^a-zA-Z0-9_-]+")


class BridgeConfig(BaseModel):
    """Resolved configuration, immutable once the bridge starts."""

    mqtt_ip: str
    mqtt_port: int
    mqtt_user: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_tls_port: int | None = None
    mqtt_ca_cert: str | None = None
    topic_prefix: str = "mac2mqtt"
    hostname: str | None = None

    volume_interval: float = INTERVAL_DEFAULTS["volume_interval"]
    media_interval: float = INTERVAL_DEFAULTS["media_interval"]
    battery_interval: float = INTERVAL_DEFAULTS["battery_interval"]
    cpu_interval: float = INTERVAL_DEFAULTS["cpu_interval"]
    memory_interval: float = INTERVAL_DEFAULTS["memory_interval"]
    uptime_interval: float = INTERVAL_DEFAULTS["uptime_interval"]
    publicip_interval: float = INTERVAL_DEFAULTS["publicip_interval"]
    disk_interval: float = INTERVAL_DEFAULTS["disk_interval"]
    display_interval: float = INTERVAL_DEFAULTS["display_interval"]
    keepawake_interval: float = INTERVAL_DEFAULTS["keepawake_interval"]

    idle_threshold: float = INTERVAL_DEFAULTS["idle_threshold"]
    activity_sample_interval: float = INTERVAL_DEFAULTS["activity_sample_interval"]
    reachability_interval: float = INTERVAL_DEFAULTS["reachability_interval"]
    reconnect_delay: float = INTERVAL_DEFAULTS["reconnect_delay"]
    max_transport_fallbacks: int = 1

    discovery_enabled: bool = True
    discovery_prefix: str = "homeassistant"
    media_stream_command: list[str] = ["media-control", "stream"]

    model_config = {"frozen": True}

    @field_validator(*INTERVAL_DEFAULTS.keys(), mode="before")
    @classmethod
    def _default_when_unset(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return INTERVAL_DEFAULTS[info.field_name]
        try:
            if float(value) <= 0:
                return INTERVAL_DEFAULTS[info.field_name]
        except (TypeError, ValueError):
            return value
        return value

    @field_validator("mqtt_ip", mode="before")
    @classmethod
    def _require_host(cls, value: Any) -> Any:
        if value is None or not str(value).strip():
            msg = "mqtt_ip must not be empty"
            raise ValueError(msg)
        return str(value).strip()

    @field_validator("media_stream_command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.split()
        return value

    @property
    def resolved_hostname(self) -> str:
        return self.hostname or get_hostname()


def get_hostname(raw: str | None = None) -> str:
    """``"Jane's-MacBook.local"`` -> ``"Janes-MacBook"``"""
    first_part = (raw if raw is not None else socket.gethostname()).split(".")[0]
    return _HOSTNAME_STRIP.sub("", first_part)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_key, config_key in ENV_OVERRIDES.items():
        value = environ.get(env_key)
        if value is None or value == "":
            continue
        if config_key in ("mqtt_tls", "discovery_enabled"):
            overrides[config_key] = value.casefold() in YES_ANSWER
        else:
            overrides[config_key] = value
    return overrides


def load_config(path: Path | str | None, environ: Mapping[str, str] | None = None) -> BridgeConfig:
    """Read the YAML file (if present), apply env overrides and validate.

    Raises:
        ConfigError: broker address or port missing, or any value invalid

    """
    lp = "config:load:"
    raw: dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path).expanduser()
        if cfg_path.exists():
            try:
                with cfg_path.open() as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"cannot parse {cfg_path}: {e}") from e
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
            raw = dict(loaded or {})
            logger.info("%s Loaded configuration file", lp, extra={"path": str(cfg_path)})
        else:
            logger.warning("%s Configuration file not found, using environment only", lp, extra={"path": str(cfg_path)})

    raw.update(_env_overrides(environ if environ is not None else os.environ))

    for required in ("mqtt_ip", "mqtt_port"):
        if raw.get(required) in (None, ""):
            raise ConfigError(f"Must specify {required} in configuration", key=required)

    try:
        return BridgeConfig(**raw)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigError(f"{key}: {first.get('msg')}", key=key or None) from e
