"""Exception hierarchy for the mac2mqtt bridge.

Configuration errors are the only fatal kind; everything else is caught by
the worker that triggered it, logged, and the worker keeps running.
"""

from __future__ import annotations


class Mac2MqttError(Exception):
    """Base class for all bridge errors."""


class ConfigError(Mac2MqttError):
    """Required configuration is missing or invalid (startup only)."""

    def __init__(self, reason: str, key: str | None = None) -> None:
        """Initialize config error with reason and offending key."""
        self.reason: str = reason
        self.key: str | None = key
        super().__init__(f"Invalid configuration: {reason}")


class BridgeConnectionError(Mac2MqttError):
    """Broker connection could not be established.

    Note: Named BridgeConnectionError to avoid shadowing Python's built-in ConnectionError.

    Attributes:
        reason: Specific failure reason
        transport: Transport in use when the failure happened ("tls" or "plain")

    """

    def __init__(self, reason: str, transport: str = "unknown") -> None:
        """Initialize connection error with reason and transport."""
        self.reason: str = reason
        self.transport: str = transport
        super().__init__(f"Connection error: {reason} (transport: {transport})")


class BrokerUnreachableError(BridgeConnectionError):
    """TCP reachability check to the broker failed before any handshake."""

    def __init__(self, host: str, port: int, reason: str = "unreachable") -> None:
        """Initialize unreachable error with broker address."""
        self.host: str = host
        self.port: int = port
        super().__init__(f"{host}:{port} unreachable ({reason})", transport="none")


class HandshakeError(BridgeConnectionError):
    """MQTT CONNECT/CONNACK exchange failed on an otherwise reachable broker."""


class RetryBudgetExhaustedError(BridgeConnectionError):
    """Every transport failed and no fallback attempts remain in this window.

    Attributes:
        attempts: Number of fallback attempts consumed

    """

    def __init__(self, reason: str, attempts: int, transport: str = "unknown") -> None:
        """Initialize retry budget error with attempt count."""
        self.attempts: int = attempts
        super().__init__(f"{reason} after {attempts} fallback attempt(s)", transport=transport)


class CommandValidationError(Mac2MqttError):
    """Inbound command payload failed validation; no capability call is made."""

    def __init__(self, command: str, payload: str, reason: str) -> None:
        """Initialize validation error with command name and payload."""
        self.command: str = command
        self.payload: str = payload
        self.reason: str = reason
        super().__init__(f"Rejected {command} payload {payload!r}: {reason}")


class CapabilityError(Mac2MqttError):
    """A host capability call (read or write) failed."""

    def __init__(self, capability: str, reason: str) -> None:
        """Initialize capability error with capability name."""
        self.capability: str = capability
        self.reason: str = reason
        super().__init__(f"Capability '{capability}' failed: {reason}")


class TelemetryError(CapabilityError):
    """A telemetry read failed."""
