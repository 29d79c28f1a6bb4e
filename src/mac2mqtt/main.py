from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

import aiomqtt
import dotenv
import uvloop

from mac2mqtt.activity import ActivityMonitor
from mac2mqtt.capabilities import MacOSCapability
from mac2mqtt.config import BridgeConfig, load_config
from mac2mqtt.const import MAC2MQTT_CONFIG_FILE, MAC2MQTT_DEBUG, MAC2MQTT_VERSION
from mac2mqtt.correlation import correlation_context, ensure_correlation_id
from mac2mqtt.exceptions import ConfigError
from mac2mqtt.logging_abstraction import get_logger, quiet_third_party_loggers, set_global_level
from mac2mqtt.media import MediaStreamMerger
from mac2mqtt.mqtt import CommandRouter, ConnectionManager, DiscoveryHelper, StateUpdateHelper
from mac2mqtt.scheduler import StateScheduler
from mac2mqtt.structs import DeviceCapability, TelemetrySource
from mac2mqtt.telemetry import HostTelemetrySource
from mac2mqtt.topics import TopicNamespace
from mac2mqtt.utils import install_signal_handlers

logger = get_logger(__name__)


class Mac2MqttBridge:
    """Wires the connection, router, scheduler and feeds together."""

    lp: str = "mac2mqtt:"

    def __init__(
        self,
        config: BridgeConfig,
        capability: DeviceCapability | None = None,
        telemetry: TelemetrySource | None = None,
        client_factory: Callable[..., aiomqtt.Client] = aiomqtt.Client,
    ) -> None:
        self.config: BridgeConfig = config
        self._closers: list[Callable[[], Awaitable[None]]] = []
        if capability is None:
            mac = MacOSCapability()
            self._closers.append(mac.close)
            capability = mac
        if telemetry is None:
            host = HostTelemetrySource(config.media_stream_command)
            self._closers.append(host.close)
            telemetry = host
        self.capability: DeviceCapability = capability
        self.telemetry: TelemetrySource = telemetry

        self.topics = TopicNamespace(config.topic_prefix, config.resolved_hostname)
        self.connection = ConnectionManager(config, self.topics, client_factory=client_factory)
        self.state_updates = StateUpdateHelper(self.connection, self.topics, capability, telemetry)
        self.media = MediaStreamMerger(telemetry, self.state_updates)
        self.router = CommandRouter(self.topics, capability, self.state_updates, media_republish=self.media.republish)
        self.activity = ActivityMonitor(
            telemetry,
            self.state_updates,
            idle_threshold=config.idle_threshold,
            sample_interval=config.activity_sample_interval,
        )
        self.scheduler = StateScheduler(config, self.connection, self.state_updates)
        self.discovery = DiscoveryHelper(config, self.connection, self.topics, capability)

        self.connection.set_message_handler(self.router.enqueue)
        self.connection.on_connected(self.on_connected)
        self.connection.on_lost(self.on_lost)

    async def on_connected(self) -> None:
        """Broker may have dropped retained state: re-register and publish everything."""
        _ = await self.discovery.publish_discovery()
        await self.state_updates.pub_all()
        _ = await self.media.republish()
        await self.activity.start()

    async def on_lost(self) -> None:
        lp = f"{self.lp}on_lost:"
        logger.warning("%s broker connection lost, running offline", lp)
        await self.activity.stop()

    async def run(self) -> None:
        lp = f"{self.lp}run:"
        _ = ensure_correlation_id()
        logger.info(
            "%s Starting bridge",
            lp,
            extra={"base_topic": self.topics.base, "broker": f"{self.config.mqtt_ip}:{self.config.mqtt_port}"},
        )
        tasks: list[asyncio.Task[None]] = [
            self.router.start(),
            *self.scheduler.start(),
            *self.connection.start(),
        ]
        media_task = self.media.start()
        if media_task is not None:
            tasks.append(media_task)
        try:
            _ = await asyncio.gather(*tasks)
        finally:
            await self.stop()

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        logger.info("%s Shutting down...", lp)
        _ = await asyncio.gather(*self.scheduler.stop(), return_exceptions=True)
        await self.activity.stop()
        await self.router.stop()
        await self.connection.stop()
        for close in self._closers:
            try:
                await close()
            except Exception as e:
                logger.warning("%s cleanup failed: %s", lp, e)


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bridge this Mac to an MQTT broker")
    _ = parser.add_argument(
        "-c",
        "--config",
        help="Path to the YAML configuration file",
        default=Path(MAC2MQTT_CONFIG_FILE),
        type=Path,
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    return parser.parse_args(argv)


def load_env_file(env_file: Path) -> bool:
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    if dotenv.load_dotenv(env_path, override=True):
        logger.info("Environment variables loaded", extra={"source": str(env_path)})
        return True
    logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return False


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point. Returns the process exit status."""
    with correlation_context():
        logger.info("Starting mac2mqtt", extra={"version": MAC2MQTT_VERSION})
        args = parse_cli(argv)
        quiet_third_party_loggers()
        if args.debug or MAC2MQTT_DEBUG:
            set_global_level(logging.DEBUG)
            logger.info("Debug logging enabled")
        if args.env:
            _ = load_env_file(args.env)

        try:
            config = load_config(args.config)
        except ConfigError as e:
            logger.error("%s", e, extra={"key": e.key})
            return 1

        bridge = Mac2MqttBridge(config)

        async def _run() -> None:
            install_signal_handlers(asyncio.get_running_loop(), asyncio.current_task())
            await bridge.run()

        try:
            uvloop.run(_run())
        except asyncio.CancelledError:
            logger.info("mac2mqtt cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        logger.info("mac2mqtt shutdown complete")
        return 0


if __name__ == "__main__":
    sys.exit(main())
