"""Broker-facing side of the bridge."""

from mac2mqtt.mqtt.command_routing import CommandRouter
from mac2mqtt.mqtt.connection import ConnectionManager
from mac2mqtt.mqtt.discovery import DiscoveryHelper
from mac2mqtt.mqtt.state_updates import StateUpdateHelper

__all__ = ["CommandRouter", "ConnectionManager", "DiscoveryHelper", "StateUpdateHelper"]
