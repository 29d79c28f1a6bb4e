import logging
import os

from mac2mqtt import __version__

__all__ = [
    "ACTIVITY_ACTIVE_MSG",
    "ACTIVITY_INACTIVE_MSG",
    "ALIVE_OFFLINE_MSG",
    "ALIVE_ONLINE_MSG",
    "FOREIGN_LOG_FORMATTER",
    "MAC2MQTT_CONFIG_FILE",
    "MAC2MQTT_DEBUG",
    "MAC2MQTT_LOG_FORMAT",
    "MAC2MQTT_LOG_HUMAN_OUTPUT",
    "MAC2MQTT_LOG_JSON_FILE",
    "MAC2MQTT_LOG_NAME",
    "MAC2MQTT_PERF_THRESHOLD_MS",
    "MAC2MQTT_PERF_TRACKING",
    "MAC2MQTT_VERSION",
    "MQTT_CONNECT_TIMEOUT",
    "MQTT_CONNECTION_START_TASK_NAME",
    "MQTT_KEEPALIVE",
    "MQTT_WRITE_TIMEOUT",
    "ORIGIN_STRUCT",
    "PLAYPAUSE_SETTLE_DELAY",
    "REACHABILITY_CHECK_TIMEOUT",
    "SUBPROCESS_TIMEOUT",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
MAC2MQTT_LOG_NAME: str = "mac2mqtt"

# adds logger name
FOREIGN_LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s <%(name)s> [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)
MAC2MQTT_VERSION: str = __version__

MAC2MQTT_CONFIG_FILE: str = os.environ.get("MAC2MQTT_CONFIG_FILE", "mac2mqtt.yaml")
MAC2MQTT_DEBUG = os.environ.get("MAC2MQTT_DEBUG", "0").casefold() in YES_ANSWER

ALIVE_ONLINE_MSG: bytes = b"online"
ALIVE_OFFLINE_MSG: bytes = b"offline"
ACTIVITY_ACTIVE_MSG: bytes = b"active"
ACTIVITY_INACTIVE_MSG: bytes = b"inactive"

# Broker timeouts (seconds)
MQTT_CONNECT_TIMEOUT: float = 15.0
MQTT_WRITE_TIMEOUT: float = 10.0
MQTT_KEEPALIVE: int = 10
REACHABILITY_CHECK_TIMEOUT: float = 5.0

SUBPROCESS_TIMEOUT: float = 10.0
# let play/pause reach the player before reading state back
PLAYPAUSE_SETTLE_DELAY: float = 0.5

MQTT_CONNECTION_START_TASK_NAME = "ConnectionManager_START"

ORIGIN_STRUCT = {
    "name": "mac2mqtt",
    "sw_version": MAC2MQTT_VERSION,
}

# Logging Configuration
MAC2MQTT_LOG_FORMAT: str = os.environ.get("MAC2MQTT_LOG_FORMAT", "human")  # "json", "human", or "both"
MAC2MQTT_LOG_JSON_FILE: str | None = os.environ.get("MAC2MQTT_LOG_JSON_FILE") or None
MAC2MQTT_LOG_HUMAN_OUTPUT: str = os.environ.get("MAC2MQTT_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
MAC2MQTT_PERF_TRACKING: bool = os.environ.get("MAC2MQTT_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("MAC2MQTT_PERF_THRESHOLD_MS", "500")
MAC2MQTT_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 500
