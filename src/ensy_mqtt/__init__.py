"""Ensy MQTT - Unofficial library for Ensy ventilation units.

This library keeps a local copy of the state of an Ensy (or InoVent branded)
ventilation unit in sync through the Ensy cloud MQTT broker, and sends
commands (target temperature, fan level, preset) back to it.

Disclaimer: This project is not affiliated with, endorsed by, or connected to
Ensy AS or InoVent. All trademarks are the property of their respective owners.

Basic Usage:
    from ensy_mqtt import EnsyClient, PresetMode, StateUpdate, format_sensors

    def on_event(event):
        if isinstance(event, StateUpdate):
            print(format_sensors(event.current))

    async with EnsyClient("AA:BB:CC:00:11:22") as client:
        client.subscribe(on_event)
        await client.set_preset_mode(PresetMode.AWAY)

Checking a MAC address before setting up a device:
    from ensy_mqtt import EnsyClient

    if await EnsyClient.test_connectivity("AA:BB:CC:00:11:22"):
        ...
"""

from __future__ import annotations

from .client import EnsyClient, ReconnectPolicy
from .events import Connected, Disconnected, Error, Event, EventHandler, StateUpdate
from .protocol import (
    # Constants
    API_HOST,
    API_PATH,
    API_PORT,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
    # Enums
    ApplyKey,
    FanMode,
    PresetMode,
    ReportKey,
    # Data classes
    DeviceState,
    # Functions
    apply_prefix,
    build_fan_command,
    build_preset_commands,
    build_temperature_command,
    changed_fields,
    decode_report,
    format_sensors,
    normalize_mac,
    report_prefix,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Primary interface
    "EnsyClient",
    "ReconnectPolicy",
    # Events
    "Connected",
    "Disconnected",
    "Error",
    "Event",
    "EventHandler",
    "StateUpdate",
    # Data classes and enums
    "DeviceState",
    "ApplyKey",
    "FanMode",
    "PresetMode",
    "ReportKey",
    # Constants
    "API_HOST",
    "API_PATH",
    "API_PORT",
    "MAX_TEMPERATURE",
    "MIN_TEMPERATURE",
    # Protocol functions (for advanced use)
    "apply_prefix",
    "build_fan_command",
    "build_preset_commands",
    "build_temperature_command",
    "changed_fields",
    "decode_report",
    "format_sensors",
    "normalize_mac",
    "report_prefix",
]
