"""Host capability implementations."""

from mac2mqtt.capabilities.macos import MacOSCapability, OsascriptVolumeBackend, VolumeBackend

__all__ = ["MacOSCapability", "OsascriptVolumeBackend", "VolumeBackend"]
