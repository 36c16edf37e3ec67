"""Ensy MQTT Client - Primary interface for monitoring and controlling units.

This module provides EnsyClient, which owns one MQTT session to the Ensy
broker, keeps a DeviceState in sync with what the unit reports, and turns
commands into publishes on the unit's apply topics.

Example:
    client = EnsyClient("AA:BB:CC:00:11:22")
    client.subscribe(print)
    await client.connect()
    ...
    await client.set_preset_mode(PresetMode.AWAY)
    await client.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable

import aiomqtt

from .events import Connected, Disconnected, Error, Event, EventHandler, StateUpdate
from .protocol import (
    API_HOST,
    API_PATH,
    API_PORT,
    PUBLISH_QOS,
    SUBSCRIBE_QOS,
    DeviceState,
    FanMode,
    PresetMode,
    apply_prefix,
    build_fan_command,
    build_preset_commands,
    build_temperature_command,
    decode_report,
    normalize_mac,
    report_prefix,
)

_LOGGER = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30.0
PROBE_TIMEOUT = 10.0
# Upper bound for sending DISCONNECT on a session whose handshake was cut short
CLOSE_TIMEOUT = 2.0


@dataclass(frozen=True)
class ReconnectPolicy:
    """How the client retries after a failed or lost session.

    Args:
        interval: Seconds to wait between attempts
        max_attempts: Consecutive failed attempts before giving up.
            None retries forever.
    """

    interval: float = 5.0
    max_attempts: int | None = None


class EnsyClient:
    """Client for an Ensy / InoVent ventilation unit.

    Keeps a live DeviceState for one unit and exposes commands. Connection
    lifecycle is handled internally: connect() starts a background session
    that reconnects on its own until disconnect() is called.

    Notifications (Connected, Disconnected, Error, StateUpdate) are delivered
    to handlers registered with subscribe().

    Args:
        mac_address: Unit MAC address, any case, with or without colons
        host: Broker hostname
        port: Broker websocket port
        path: Broker websocket path
        connect_timeout: Seconds allowed for the MQTT handshake
        reconnect_policy: Retry behaviour after a failed or lost session
        verify_tls: Verify the broker certificate. The Ensy broker does not
            present a verifiable chain, so this is off by default.

    Example:
        async with EnsyClient("AA:BB:CC:00:11:22") as client:
            client.subscribe(on_event)
            await client.set_target_temperature(21)
    """

    def __init__(
        self,
        mac_address: str,
        *,
        host: str = API_HOST,
        port: int = API_PORT,
        path: str = API_PATH,
        connect_timeout: float = CONNECT_TIMEOUT,
        reconnect_policy: ReconnectPolicy | None = None,
        verify_tls: bool = False,
    ) -> None:
        self._device_id = normalize_mac(mac_address)
        self._report_prefix = report_prefix(self._device_id)
        self._apply_prefix = apply_prefix(self._device_id)
        self._host = host
        self._port = port
        self._path = path
        self._connect_timeout = connect_timeout
        self._reconnect_policy = reconnect_policy or ReconnectPolicy()
        self._verify_tls = verify_tls

        self._state = DeviceState()
        self._handlers: list[EventHandler] = []
        self._mqtt: aiomqtt.Client | None = None
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> "EnsyClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    @property
    def device_id(self) -> str:
        """Unit id as used in topics (lowercase MAC without colons)."""
        return self._device_id

    @property
    def state(self) -> DeviceState:
        """Current state snapshot."""
        return self._state

    @property
    def connected(self) -> bool:
        """True while an MQTT session is established."""
        return self._mqtt is not None

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return self._reconnect_policy

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a notification handler.

        Handlers run on the event loop, in the order events happen, and must
        not block.

        Returns:
            Callable that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                _LOGGER.exception(
                    "Error in %s handler for %s", type(event).__name__, self._device_id
                )

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the MQTT session in the background.

        Returns as soon as the attempt is started. Watch for Connected (or
        Error) to learn how it went. Calling this while a session is already
        running does nothing.
        """
        if self._task is not None and not self._task.done():
            return
        _LOGGER.debug(
            "Connecting to %s:%s%s for %s", self._host, self._port, self._path, self._device_id
        )
        self._task = asyncio.create_task(
            self._run(), name=f"ensy_mqtt-{self._device_id}"
        )

    async def disconnect(self) -> None:
        """Close the MQTT session and stop reconnecting.

        Safe to call when not connected. The last known state is kept.
        """
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        await asyncio.wait([task])
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.error(
                "Session for %s ended with an error",
                self._device_id,
                exc_info=task.exception(),
            )
        _LOGGER.info("Disconnected from %s", self._device_id)

    def _create_transport(self) -> aiomqtt.Client:
        tls_context = ssl.create_default_context()
        if not self._verify_tls:
            tls_context.check_hostname = False
            tls_context.verify_mode = ssl.CERT_NONE
        return aiomqtt.Client(
            hostname=self._host,
            port=self._port,
            transport="websockets",
            websocket_path=self._path,
            tls_context=tls_context,
            timeout=self._connect_timeout,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiomqtt.Client]:
        """Open a transport and close it on exit.

        Unlike ``async with aiomqtt.Client()``, the transport is also closed
        when the task is cancelled while still waiting for the broker's
        CONNACK, so disconnect() never leaves a socket behind.
        """
        mqtt = self._create_transport()
        try:
            await mqtt.__aenter__()
        except asyncio.CancelledError:
            await _close_half_open(mqtt)
            raise
        try:
            yield mqtt
        finally:
            await mqtt.__aexit__(None, None, None)

    async def _run(self) -> None:
        """Session loop: connect, consume reports, reconnect on failure."""
        policy = self._reconnect_policy
        failures = 0
        while True:
            established = False
            error: aiomqtt.MqttError | None = None
            try:
                async with self._session() as mqtt:
                    await mqtt.subscribe(f"{self._report_prefix}#", qos=SUBSCRIBE_QOS)
                    self._mqtt = mqtt
                    established = True
                    failures = 0
                    _LOGGER.info("Connected to Ensy broker for %s", self._device_id)
                    self._emit(Connected())

                    async for message in mqtt.messages:
                        self._handle_message(message.topic.value, _payload_text(message.payload))
            except aiomqtt.MqttError as err:
                error = err
            finally:
                self._mqtt = None

            if established:
                _LOGGER.warning(
                    "Connection to Ensy broker lost for %s: %s",
                    self._device_id,
                    error or "session closed",
                )
                self._emit(Disconnected(str(error) if error else None))
            else:
                failures += 1
                _LOGGER.warning(
                    "Connecting to Ensy broker failed for %s: %s", self._device_id, error
                )
                self._emit(Error(f"Connection failed: {error}", error))
                if policy.max_attempts is not None and failures >= policy.max_attempts:
                    _LOGGER.error(
                        "Giving up on %s after %d failed attempts", self._device_id, failures
                    )
                    return

            _LOGGER.debug("Reconnecting in %s seconds", policy.interval)
            await asyncio.sleep(policy.interval)

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def _handle_message(self, topic: str, value: str) -> None:
        """Apply one report message to the state and notify handlers."""
        if not topic.startswith(self._report_prefix):
            return

        key = topic[len(self._report_prefix):]
        updates = decode_report(key, value, self._state.preset_mode)
        if updates is None:
            _LOGGER.debug("Ignoring %s=%r", topic, value)
            return

        previous = self._state
        self._state = replace(previous, **updates)
        self._emit(StateUpdate(current=self._state, previous=previous))

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def set_target_temperature(self, temperature: int) -> None:
        """Set target temperature.

        Args:
            temperature: Target in °C (15-26)

        Raises:
            ValueError: If temperature is out of range. Nothing is published.
        """
        await self._apply(build_temperature_command(temperature))

    async def set_fan_mode(self, level: FanMode | int) -> None:
        """Set fan level.

        The unit only honours fan commands in HOME, so any other preset is
        switched to HOME first.

        Raises:
            ValueError: If level is not a valid FanMode
        """
        commands = build_fan_command(level)
        if self._state.preset_mode is not PresetMode.HOME:
            await self.set_preset_mode(PresetMode.HOME)
        await self._apply(commands)

    async def set_preset_mode(self, mode: PresetMode | str) -> None:
        """Switch preset (home, away, boost).

        Does nothing if the unit already reports this preset.

        Raises:
            ValueError: If mode is not a valid PresetMode
        """
        preset = PresetMode(mode)
        if preset is self._state.preset_mode:
            return
        await self._apply(build_preset_commands(preset))

    async def _apply(self, commands: list[tuple[str, str]]) -> None:
        for key, payload in commands:
            await self._publish(f"{self._apply_prefix}{key}", payload)

    async def _publish(self, topic: str, payload: str) -> None:
        mqtt = self._mqtt
        if mqtt is None:
            _LOGGER.debug("Not connected, dropping %s=%s", topic, payload)
            return
        try:
            await mqtt.publish(topic, payload, qos=PUBLISH_QOS, retain=True)
        except aiomqtt.MqttError as err:
            _LOGGER.warning("Publishing %s=%s failed: %s", topic, payload, err)
            self._emit(Error(f"Publish to {topic} failed: {err}", err))
        else:
            _LOGGER.debug("Published %s=%s", topic, payload)

    # -------------------------------------------------------------------------
    # Connectivity probe
    # -------------------------------------------------------------------------

    @classmethod
    async def test_connectivity(
        cls,
        mac_address: str,
        timeout: float = PROBE_TIMEOUT,
        **client_kwargs: Any,
    ) -> bool:
        """Check that a unit can be reached through the broker.

        Connects a temporary client and waits for the first state report.
        The temporary client is always disconnected before returning.

        Args:
            mac_address: Unit MAC address
            timeout: Seconds to wait for a report
            **client_kwargs: Passed through to EnsyClient

        Returns:
            True if the unit reported state within timeout, False on a
            connection error or timeout
        """
        # The handshake must not outlive the test
        client_kwargs["connect_timeout"] = min(
            client_kwargs.get("connect_timeout", timeout), timeout
        )
        client = cls(mac_address, **client_kwargs)
        outcome: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        def on_event(event: Event) -> None:
            if outcome.done():
                return
            if isinstance(event, StateUpdate):
                outcome.set_result(True)
            elif isinstance(event, Error):
                outcome.set_result(False)

        unsubscribe = client.subscribe(on_event)
        try:
            try:
                await client.connect()
            except Exception as err:
                _LOGGER.debug("Connectivity test for %s failed: %s", client.device_id, err)
                return False
            return await asyncio.wait_for(outcome, timeout=timeout)
        except TimeoutError:
            _LOGGER.debug("No report from %s within %s seconds", client.device_id, timeout)
            return False
        finally:
            unsubscribe()
            await client.disconnect()


async def _close_half_open(mqtt: aiomqtt.Client) -> None:
    """Close a transport whose handshake was interrupted."""
    try:
        async with asyncio.timeout(CLOSE_TIMEOUT):
            await mqtt.__aexit__(None, None, None)
    except Exception as err:
        _LOGGER.debug("Closing interrupted session: %s", err)
    # DISCONNECT could not be written; paho still holds the socket
    paho = mqtt._client
    if paho.socket() is not None:
        paho._sock_close()


def _payload_text(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)
