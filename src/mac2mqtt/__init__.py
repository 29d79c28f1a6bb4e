"""Bridge a macOS host's controllable state to an MQTT broker."""

__version__ = "0.4.0"
