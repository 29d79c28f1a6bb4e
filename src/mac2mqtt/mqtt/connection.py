"""Broker connection lifecycle.

Owns the single aiomqtt client: reachability probing, TLS -> plain transport
fallback bounded by a RetryBudget, presence (retained ``online`` plus an
``offline`` last will), the inbound message loop and reconnects.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import ssl
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import aiomqtt

from mac2mqtt.const import (
    ALIVE_OFFLINE_MSG,
    ALIVE_ONLINE_MSG,
    MQTT_CONNECT_TIMEOUT,
    MQTT_CONNECTION_START_TASK_NAME,
    MQTT_KEEPALIVE,
    MQTT_WRITE_TIMEOUT,
    REACHABILITY_CHECK_TIMEOUT,
)
from mac2mqtt.correlation import correlation_context
from mac2mqtt.exceptions import (
    BridgeConnectionError,
    BrokerUnreachableError,
    HandshakeError,
    RetryBudgetExhaustedError,
)
from mac2mqtt.logging_abstraction import get_logger
from mac2mqtt.mqtt.retry_policy import ReconnectBackoff
from mac2mqtt.structs import ConnectionState, InboundMessage, RetryBudget, Transport

if TYPE_CHECKING:
    from mac2mqtt.config import BridgeConfig
    from mac2mqtt.topics import TopicNamespace

logger = get_logger(__name__)

LifecycleHandler = Callable[[], Awaitable[None]]
MessageHandler = Callable[[InboundMessage], Awaitable[None]]
ClientFactory = Callable[..., aiomqtt.Client]
ReachabilityCheck = Callable[[str, int], Awaitable[bool]]


async def tcp_reachable(host: str, port: int, timeout: float = REACHABILITY_CHECK_TIMEOUT) -> bool:
    """True when a plain TCP connection to host:port opens within ``timeout``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


class ConnectionManager:
    """Connect, stay connected, and tell the rest of the bridge when that changes."""

    lp: str = "mqtt:"

    def __init__(
        self,
        config: BridgeConfig,
        topics: TopicNamespace,
        client_factory: ClientFactory = aiomqtt.Client,
        reachability_check: ReachabilityCheck = tcp_reachable,
    ) -> None:
        self.config = config
        self.topics = topics
        self.identifier: str = f"mac2mqtt_{topics.hostname}"
        self.client: aiomqtt.Client | None = None
        self.retry_budget: RetryBudget = RetryBudget(config.max_transport_fallbacks)
        self.preferred_transport: Transport = Transport.TLS if config.mqtt_tls else Transport.PLAIN
        # last transport that completed a handshake; reconnects reuse it
        self.resolved_transport: Transport | None = None
        self.backoff: ReconnectBackoff = ReconnectBackoff(
            base_delay_seconds=config.reconnect_delay,
            max_delay_seconds=max(config.reconnect_delay, config.reachability_interval * 2),
        )
        self.tasks: list[asyncio.Task[None]] = []

        self._client_factory: ClientFactory = client_factory
        self._reachability_check: ReachabilityCheck = reachability_check
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._reachable: bool | None = None
        self._state_lock: threading.Lock = threading.Lock()
        self._connect_lock: asyncio.Lock = asyncio.Lock()
        self._nudge: asyncio.Event = asyncio.Event()
        self._connected_handlers: list[LifecycleHandler] = []
        self._lost_handlers: list[LifecycleHandler] = []
        self._message_handler: MessageHandler | None = None

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def is_reachable(self) -> bool:
        """Result of the most recent reachability check (False before the first)."""
        with self._state_lock:
            return self._reachable is True

    def _set_state(self, new_state: ConnectionState) -> None:
        with self._state_lock:
            old_state = self._state
            self._state = new_state
        if old_state is not new_state:
            logger.debug(
                "%s state %s -> %s",
                self.lp,
                old_state,
                new_state,
                extra={"from_state": str(old_state), "to_state": str(new_state)},
            )

    # -- registration --------------------------------------------------------

    def on_connected(self, handler: LifecycleHandler) -> None:
        self._connected_handlers.append(handler)

    def on_lost(self, handler: LifecycleHandler) -> None:
        self._lost_handlers.append(handler)

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    # -- reachability --------------------------------------------------------

    def _port_for(self, transport: Transport) -> int:
        if transport is Transport.TLS and self.config.mqtt_tls_port:
            return self.config.mqtt_tls_port
        return self.config.mqtt_port

    async def check_reachability(self) -> bool:
        transport = self.resolved_transport or self.preferred_transport
        reachable = await self._reachability_check(self.config.mqtt_ip, self._port_for(transport))
        self._note_reachability(reachable)
        return reachable

    def _note_reachability(self, reachable: bool) -> None:
        lp = f"{self.lp}reachability:"
        with self._state_lock:
            previous = self._reachable
            self._reachable = reachable
        if previous is None:
            logger.debug("%s initial reachability: %s", lp, "reachable" if reachable else "unreachable")
        elif previous and not reachable:
            logger.warning(
                "%s broker %s:%s became unreachable",
                lp,
                self.config.mqtt_ip,
                self.config.mqtt_port,
            )
        elif not previous and reachable:
            logger.info(
                "%s broker %s:%s reachable again",
                lp,
                self.config.mqtt_ip,
                self.config.mqtt_port,
            )
            self.retry_budget.reset()
            self.backoff.reset()
            self.request_reconnect()

        if self.state in (ConnectionState.DISCONNECTED, ConnectionState.NETWORK_UNREACHABLE):
            self._set_state(ConnectionState.DISCONNECTED if reachable else ConnectionState.NETWORK_UNREACHABLE)

    def request_reconnect(self) -> None:
        """Cut the current reconnect wait short. No-op while connected or connecting."""
        if self.is_connected or self._connect_lock.locked():
            return
        self._nudge.set()

    async def watch_reachability(self) -> None:
        lp = f"{self.lp}watch_reachability:"
        logger.debug("%s polling every %ss", lp, self.config.reachability_interval)
        while True:
            await asyncio.sleep(self.config.reachability_interval)
            _ = await self.check_reachability()

    # -- connect -------------------------------------------------------------

    def _build_client(self, transport: Transport) -> aiomqtt.Client:
        kwargs: dict[str, Any] = {
            "hostname": self.config.mqtt_ip,
            "port": self.config.mqtt_port,
            "username": self.config.mqtt_user,
            "password": self.config.mqtt_password,
            "identifier": self.identifier,
            "will": aiomqtt.Will(topic=self.topics.alive, payload=ALIVE_OFFLINE_MSG, qos=1, retain=True),
            "clean_session": False,
            "keepalive": MQTT_KEEPALIVE,
            "timeout": MQTT_CONNECT_TIMEOUT,
        }
        if transport is Transport.TLS:
            kwargs["port"] = self._port_for(transport)
            kwargs["tls_context"] = ssl.create_default_context(cafile=self.config.mqtt_ca_cert)
        return self._client_factory(**kwargs)

    async def _handshake(self, transport: Transport) -> aiomqtt.Client:
        lp = f"{self.lp}handshake:"
        logger.debug("%s attempting %s connection to %s", lp, transport, self.config.mqtt_ip)
        try:
            client = self._build_client(transport)
            _ = await client.__aenter__()
        except (aiomqtt.MqttError, OSError, ssl.SSLError, TimeoutError) as e:
            # [code:134] Bad user name or password
            if "code:134" in str(e):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.config.mqtt_user,
                )
            raise HandshakeError(str(e), transport=str(transport)) from e
        return client

    async def connect(self) -> Transport:
        """Run one connect cycle and return the transport that succeeded.

        Raises:
            BrokerUnreachableError: TCP reachability check failed, no handshake attempted
            HandshakeError: the (last) transport tried failed its handshake
            RetryBudgetExhaustedError: TLS failed and no fallback attempts remain

        """
        lp = f"{self.lp}connect:"
        async with self._connect_lock:
            if not await self.check_reachability():
                self._set_state(ConnectionState.NETWORK_UNREACHABLE)
                raise BrokerUnreachableError(self.config.mqtt_ip, self.config.mqtt_port)

            self._set_state(ConnectionState.CONNECTING)
            transport = self.resolved_transport or self.preferred_transport
            try:
                client = await self._handshake(transport)
            except HandshakeError as e:
                if transport is not Transport.TLS:
                    self._set_state(ConnectionState.DISCONNECTED)
                    raise
                if not self.retry_budget.try_consume():
                    self._set_state(ConnectionState.DISCONNECTED)
                    raise RetryBudgetExhaustedError(
                        f"TLS handshake failed: {e.reason}",
                        attempts=self.retry_budget.used,
                        transport=str(transport),
                    ) from e
                logger.warning(
                    "%s TLS handshake failed (%s), falling back to plain",
                    lp,
                    e.reason,
                    extra={"fallbacks_used": self.retry_budget.used},
                )
                transport = Transport.PLAIN
                try:
                    client = await self._handshake(transport)
                except HandshakeError:
                    self._set_state(ConnectionState.DISCONNECTED)
                    raise

            self.client = client
            self.resolved_transport = transport
            self.retry_budget.reset()
            self.backoff.reset()
            self._set_state(ConnectionState.CONNECTED)
            logger.info(
                "%s Connected to MQTT broker: %s port: %s (%s)",
                lp,
                self.config.mqtt_ip,
                self.config.mqtt_port,
                transport,
            )
            _ = await self.publish(self.topics.alive, ALIVE_ONLINE_MSG, retain=True, qos=1)
            try:
                await client.subscribe(self.topics.command_filter, qos=1)
            except aiomqtt.MqttError as e:
                # link dropped right after CONNACK
                logger.warning("%s Subscribe to %s failed: %s", lp, self.topics.command_filter, e)
                self.client = None
                self._set_state(ConnectionState.DISCONNECTED)
                with contextlib.suppress(aiomqtt.MqttError, OSError):
                    await client.__aexit__(None, None, None)
                raise HandshakeError(f"subscribe failed: {e}", transport=str(transport)) from e
            logger.debug("%s Subscribed to %s", lp, self.topics.command_filter)

        await self._fire(self._connected_handlers, "on_connected")
        return transport

    # -- run loop ------------------------------------------------------------

    async def run(self) -> None:
        """Supervise the connection forever: connect, receive, reconnect."""
        lp = f"{self.lp}run:"
        while True:
            try:
                with correlation_context(kind="conn"):
                    _ = await self.connect()
            except BridgeConnectionError as e:
                logger.warning("%s connect cycle failed: %s", lp, e, extra={"transport": e.transport})
                await self._wait_before_retry()
                continue

            try:
                await self._receive_loop()
            except aiomqtt.MqttError as e:
                logger.warning("%s connection lost: %s", lp, e)
            await self._handle_lost()
            await self._wait_before_retry()

    async def _receive_loop(self) -> None:
        lp = f"{self.lp}rcv:"
        assert self.client is not None, "client must be connected"
        logger.debug("%s Waiting for MQTT messages...", lp)
        async for message in self.client.messages:
            payload = message.payload
            if isinstance(payload, str):
                payload = payload.encode()
            elif not isinstance(payload, (bytes, bytearray)):
                payload = b"" if payload is None else str(payload).encode()
            if self._message_handler is None:
                logger.debug("%s no handler, dropping message on %s", lp, message.topic.value)
                continue
            await self._message_handler(InboundMessage(topic=message.topic.value, payload=bytes(payload)))

    async def _handle_lost(self) -> None:
        client, self.client = self.client, None
        self._set_state(ConnectionState.DISCONNECTED)
        if client is not None:
            with contextlib.suppress(aiomqtt.MqttError, OSError):
                await client.__aexit__(None, None, None)
        await self._fire(self._lost_handlers, "on_lost")

    async def _wait_before_retry(self) -> None:
        delay = self.backoff.next_delay()
        logger.debug("%s retrying in %.1fs", self.lp, delay)
        try:
            await asyncio.wait_for(self._nudge.wait(), timeout=delay)
        except TimeoutError:
            pass
        self._nudge.clear()

    async def _fire(self, handlers: list[LifecycleHandler], label: str) -> None:
        for handler in handlers:
            try:
                await handler()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s %s handler %s failed", self.lp, label, getattr(handler, "__name__", handler))

    # -- publish -------------------------------------------------------------

    async def publish(self, topic: str, payload: bytes | str, retain: bool = False, qos: int = 0) -> bool:
        """Publish when connected. Returns False (never raises) when the message was not sent."""
        lp = f"{self.lp}publish:"
        client = self.client
        if client is None or not self.is_connected:
            return False
        if isinstance(payload, str):
            payload = payload.encode()
        try:
            await client.publish(topic, payload, qos=qos, retain=retain, timeout=MQTT_WRITE_TIMEOUT)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] %s -> %s", lp, topic, mqtt_code_exc)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] %s -> %s", lp, topic, mqtt_err)
        else:
            return True
        return False

    async def publish_json(self, topic: str, data: dict[str, Any], retain: bool = False) -> bool:
        return await self.publish(topic, json.dumps(data, separators=(",", ":")).encode(), retain=retain)

    # -- start / stop --------------------------------------------------------

    def start(self) -> list[asyncio.Task[None]]:
        self.tasks = [
            asyncio.create_task(self.run(), name=MQTT_CONNECTION_START_TASK_NAME),
            asyncio.create_task(self.watch_reachability(), name="ConnectionManager_REACHABILITY"),
        ]
        return self.tasks

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        tasks, self.tasks = self.tasks, []
        for task in tasks:
            if not task.done():
                _ = task.cancel()
        # receive loop must be unwound before the client is closed
        _ = await asyncio.gather(*tasks, return_exceptions=True)
        if self.is_connected:
            _ = await self.publish(self.topics.alive, ALIVE_OFFLINE_MSG, retain=True, qos=1)
        client, self.client = self.client, None
        self._set_state(ConnectionState.DISCONNECTED)
        if client is not None:
            try:
                logger.debug("%s Disconnecting from broker...", lp)
                await client.__aexit__(None, None, None)
            except aiomqtt.MqttError as ce:
                logger.warning("%s MQTT disconnect failed: %s", lp, ce)
            else:
                logger.info("%s Disconnected from MQTT broker", lp)
