"""Logging layer for mac2mqtt.

Human-readable console output plus an optional JSON-lines file, with the
current correlation ID and any structured ``extra`` context on every line.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "BridgeLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "get_logger",
    "quiet_third_party_loggers",
    "set_global_level",
]

_NO_CORRELATION = "[--------]"
# every BridgeLogger ever created, so --debug can flip them all at once
_loggers: dict[str, BridgeLogger] = {}


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        from mac2mqtt.correlation import get_correlation_id

        entry: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "where": f"{record.module}:{record.lineno}",
            "msg": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _context_of(record)
        if context:
            entry["context"] = dict(context)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``time level [module:line] [corr-id] > message | k=v``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        from mac2mqtt.correlation import get_correlation_id

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else _NO_CORRELATION
        line = super().format(record)
        context = _context_of(record)
        if context:
            line = f"{line} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return line


class BridgeLogger:
    """Thin wrapper around :class:`logging.Logger` accepting an ``extra`` mapping.

    ``extra`` is carried on the record as ``extra_data`` so both formatters can
    render it without colliding with stdlib record attributes.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        from mac2mqtt.const import MAC2MQTT_DEBUG

        self.name: str = name
        self.log_format: str = log_format
        self.logger: logging.Logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if MAC2MQTT_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: cannot open JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(level)
                self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            target = human_output or "stdout"
            if target == "stdout":
                human_handler: logging.Handler = logging.StreamHandler(sys.stdout)
            elif target == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(target)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: cannot open log file {target}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)
            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(level)
            self.logger.addHandler(human_handler)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.log(level, msg, *args, extra={"extra_data": dict(extra)} if extra else None)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self.logger.exception(msg, *args, extra={"extra_data": dict(extra)} if extra else None)

    def set_level(self, level: int) -> None:
        """Set the level on the logger and all of its handlers."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> BridgeLogger:
    """Get or create the BridgeLogger for ``name``.

    Defaults come from the MAC2MQTT_LOG_* environment variables.
    """
    if name in _loggers:
        return _loggers[name]

    from mac2mqtt.const import (
        MAC2MQTT_LOG_FORMAT,
        MAC2MQTT_LOG_HUMAN_OUTPUT,
        MAC2MQTT_LOG_JSON_FILE,
    )

    bridge_logger = BridgeLogger(
        name=name,
        log_format=log_format or MAC2MQTT_LOG_FORMAT,
        json_file=json_file or MAC2MQTT_LOG_JSON_FILE,
        human_output=human_output or MAC2MQTT_LOG_HUMAN_OUTPUT,
    )
    _loggers[name] = bridge_logger
    return bridge_logger


def set_global_level(level: int) -> None:
    """Apply ``level`` to every BridgeLogger created so far."""
    for bridge_logger in _loggers.values():
        bridge_logger.set_level(level)


def quiet_third_party_loggers() -> None:
    """Keep the MQTT library from flooding the console."""
    from mac2mqtt.const import FOREIGN_LOG_FORMATTER

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(FOREIGN_LOG_FORMATTER)
    for name, level in (("aiomqtt", logging.WARNING), ("mqtt", logging.ERROR)):
        foreign = logging.getLogger(name)
        foreign.setLevel(level)
        foreign.propagate = False
        if not foreign.handlers:
            foreign.addHandler(handler)
