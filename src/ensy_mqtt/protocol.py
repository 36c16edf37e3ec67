"""Ensy MQTT Protocol - Topic layout, state decoding and command encoding.

This module contains the topic protocol used by Ensy (and InoVent branded)
ventilation units that report to the Ensy cloud broker.

Protocol overview:
- The broker is reached over secure websockets: wss://app.ensy.no:8083/mqtt
- Every unit is addressed by its MAC address, lowercased without colons
- The unit publishes its state to units/{id}/unit/{key} (report namespace)
- Apps publish commands to units/{id}/app/{key} (apply namespace)
- Payloads are short ASCII strings ("1", "online", "21", ...)
- Commands are published with QoS 1 and the retain flag, so the unit (and any
  app connecting later) receives the last commanded value per key

Report keys (unit → app):
- temperature: Target temperature (°C)
- status: "online" / "offline" connectivity of the unit itself
- fan: Fan level 1-3
- party: "1" while BOOST is active
- absent: "1" while AWAY is active
- textr / texauh / tsupl / tout: Extract, exhaust, supply, outside temperatures
- overheating: Heater (overheat sensor) temperature
- he: "1" while the heater is running

Apply keys (app → unit): temperature, fan, party, absent.
Clearing BOOST uses party=2, not party=0.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any, assert_never


def sensor(
    name: str,
    *,
    unit: str | None = None,
    device_class: str | None = None,
    enabled_default: bool = True,
    options: list[str] | None = None,
) -> dict:
    """Create field metadata for a state field.

    Args:
        name: Human-readable field name
        unit: Unit of measurement (e.g., "°C")
        device_class: Device class hint for integrations (temperature, enum, ...)
        enabled_default: Whether the field is shown by default
        options: Valid options for enum fields
    """
    meta = {
        "sensor": True,
        "name": name,
        "enabled_default": enabled_default,
    }
    if unit:
        meta["unit"] = unit
    if device_class:
        meta["device_class"] = device_class
    if options:
        meta["options"] = options
        meta["device_class"] = "enum"
    return meta


def format_sensors(state: "DeviceState", enabled_only: bool = True) -> str:
    """Format device state for display using field metadata.

    Args:
        state: DeviceState instance
        enabled_only: If True, only show fields enabled by default

    Returns:
        Formatted string with field names, values, and units. Fields the
        unit has not reported yet are left out.
    """
    lines = []
    for f in dataclasses.fields(state):
        meta = f.metadata
        if not meta.get("sensor"):
            continue
        if enabled_only and not meta.get("enabled_default", True):
            continue

        value = getattr(state, f.name)
        if value is None:
            continue

        name = meta.get("name", f.name)
        unit = meta.get("unit", "")

        if isinstance(value, bool):
            formatted = "Yes" if value else "No"
        elif isinstance(value, FanMode):
            formatted = value.name.lower()
        elif isinstance(value, PresetMode):
            formatted = value.value
        else:
            formatted = str(value)

        if unit:
            lines.append(f"{name}: {formatted} {unit}")
        else:
            lines.append(f"{name}: {formatted}")

    return "\n".join(lines)

# =============================================================================
# Broker Configuration
# =============================================================================

API_HOST = "app.ensy.no"
API_PORT = 8083
API_PATH = "/mqtt"

# Commands are delivered at-least-once and retained on the broker
PUBLISH_QOS = 1
SUBSCRIBE_QOS = 1

# Target temperature bounds accepted by the unit (°C, inclusive)
MIN_TEMPERATURE = 15
MAX_TEMPERATURE = 26

TOPIC_ROOT = "units"
REPORT_NAMESPACE = "unit"
APPLY_NAMESPACE = "app"

# =============================================================================
# Protocol Constants
# =============================================================================


class FanMode(IntEnum):
    """Fan levels, as sent on the fan key."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class PresetMode(StrEnum):
    """Operating presets.

    HOME is the default. AWAY and BOOST are overrides driven by the absent
    and party flags; when the flag drops the unit falls back to HOME.
    """

    HOME = "home"
    AWAY = "away"
    BOOST = "boost"


class ReportKey(StrEnum):
    """Keys published by the unit under units/{id}/unit/."""

    TEMPERATURE = "temperature"
    STATUS = "status"
    FAN = "fan"
    PARTY = "party"
    ABSENT = "absent"
    TEMP_EXTRACT = "textr"
    TEMP_EXHAUST = "texauh"
    TEMP_SUPPLY = "tsupl"
    TEMP_OUTSIDE = "tout"
    TEMP_HEATER = "overheating"
    HEATING = "he"


class ApplyKey(StrEnum):
    """Keys accepted by the unit under units/{id}/app/."""

    TEMPERATURE = "temperature"
    FAN = "fan"
    PARTY = "party"
    ABSENT = "absent"


# Flag payloads
FLAG_ON = "1"
FLAG_OFF = "0"
PARTY_CLEAR = "2"  # Clears BOOST; the unit ignores party=0
STATUS_ONLINE = "online"

# Report key -> DeviceState field for plain integer readings
TEMPERATURE_FIELDS: dict[ReportKey, str] = {
    ReportKey.TEMPERATURE: "temperature_target",
    ReportKey.TEMP_EXTRACT: "temperature_extract",
    ReportKey.TEMP_EXHAUST: "temperature_exhaust",
    ReportKey.TEMP_SUPPLY: "temperature_supply",
    ReportKey.TEMP_OUTSIDE: "temperature_outside",
    ReportKey.TEMP_HEATER: "temperature_heater",
}

FAN_VALUES: dict[str, FanMode] = {str(level.value): level for level in FanMode}


@dataclass(frozen=True)
class DeviceState:
    """Last known state of a unit.

    Built up field by field from report messages. Fields the unit has not
    reported yet stay None; they are never defaulted to zero.

    Instances are immutable. Each state change produces a new instance, so a
    snapshot handed to a listener never changes underneath it.
    """

    is_online: bool = field(default=False, metadata=sensor("Online"))
    is_heating: bool | None = field(default=None, metadata=sensor("Heating"))
    fan_mode: FanMode | None = field(default=None, metadata=sensor(
        "Fan mode", options=["low", "medium", "high"]
    ))
    preset_mode: PresetMode | None = field(default=None, metadata=sensor(
        "Preset", options=["home", "away", "boost"]
    ))

    # Temperatures
    temperature_target: int | None = field(default=None, metadata=sensor(
        "Target temperature", unit="°C", device_class="temperature"
    ))
    temperature_extract: int | None = field(default=None, metadata=sensor(
        "Extract temperature", unit="°C", device_class="temperature"
    ))
    temperature_exhaust: int | None = field(default=None, metadata=sensor(
        "Exhaust temperature", unit="°C", device_class="temperature"
    ))
    temperature_supply: int | None = field(default=None, metadata=sensor(
        "Supply temperature", unit="°C", device_class="temperature"
    ))
    temperature_outside: int | None = field(default=None, metadata=sensor(
        "Outside temperature", unit="°C", device_class="temperature"
    ))
    temperature_heater: int | None = field(default=None, metadata=sensor(
        "Heater temperature", unit="°C", device_class="temperature", enabled_default=False
    ))


def changed_fields(previous: DeviceState, current: DeviceState) -> tuple[str, ...]:
    """Return the names of the fields that differ between two snapshots.

    Useful for firing change triggers (preset changed, heating started, ...)
    from a StateUpdate notification.
    """
    return tuple(
        f.name
        for f in dataclasses.fields(current)
        if getattr(previous, f.name) != getattr(current, f.name)
    )


# =============================================================================
# Topics
# =============================================================================


def normalize_mac(mac_address: str) -> str:
    """Canonicalize a MAC address into the unit id used in topics.

    Example:
        normalize_mac("AA:BB:CC:00:11:22") -> "aabbcc001122"
    """
    return mac_address.replace(":", "").lower()


def report_prefix(device_id: str) -> str:
    """Topic prefix the unit publishes its state under."""
    return f"{TOPIC_ROOT}/{device_id}/{REPORT_NAMESPACE}/"


def apply_prefix(device_id: str) -> str:
    """Topic prefix the unit listens for commands on."""
    return f"{TOPIC_ROOT}/{device_id}/{APPLY_NAMESPACE}/"


# =============================================================================
# Decoding
# =============================================================================


def parse_int(value: str) -> int | None:
    """Parse an integer payload.

    The unit sometimes sends a fractional part; it is truncated, matching
    what the official app displays. Returns None for non-numeric payloads.
    """
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def decode_report(
    key: str, value: str, preset_mode: PresetMode | None = None
) -> dict[str, Any] | None:
    """Decode one report message into DeviceState field updates.

    Args:
        key: Topic suffix after the report prefix (e.g., "tsupl")
        value: Decoded payload string
        preset_mode: Preset currently held in the state. AWAY and BOOST only
            revert to HOME when their own flag drops while they are active.

    Returns:
        Mapping of DeviceState field name to new value, or None if the
        message is not something this library models. An empty mapping
        means the message was understood but changes nothing.
    """
    try:
        report_key = ReportKey(key)
    except ValueError:
        return None

    match report_key:
        case (
            ReportKey.TEMPERATURE
            | ReportKey.TEMP_EXTRACT
            | ReportKey.TEMP_EXHAUST
            | ReportKey.TEMP_SUPPLY
            | ReportKey.TEMP_OUTSIDE
            | ReportKey.TEMP_HEATER
        ):
            number = parse_int(value)
            if number is None:
                return None
            return {TEMPERATURE_FIELDS[report_key]: number}
        case ReportKey.STATUS:
            return {"is_online": value == STATUS_ONLINE}
        case ReportKey.FAN:
            level = FAN_VALUES.get(value)
            if level is None:
                return None
            return {"fan_mode": level}
        case ReportKey.PARTY:
            return _decode_override(value, PresetMode.BOOST, preset_mode)
        case ReportKey.ABSENT:
            return _decode_override(value, PresetMode.AWAY, preset_mode)
        case ReportKey.HEATING:
            return {"is_heating": value == FLAG_ON}
        case _:
            assert_never(report_key)


def _decode_override(
    value: str, mode: PresetMode, preset_mode: PresetMode | None
) -> dict[str, Any]:
    if value == FLAG_ON:
        return {"preset_mode": mode}
    if preset_mode is mode:
        return {"preset_mode": PresetMode.HOME}
    return {}


# =============================================================================
# Command Encoding
# =============================================================================


def build_temperature_command(temperature: int) -> list[tuple[str, str]]:
    """Build the publish for a new target temperature.

    Args:
        temperature: Target temperature in whole °C (15-26)

    Returns:
        List of (apply key, payload) pairs

    Raises:
        ValueError: If temperature is out of range or not a whole number.
            The unit only accepts whole degrees.
    """
    if temperature != int(temperature):
        raise ValueError(f"Temperature must be a whole number of degrees, got {temperature}")
    if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        raise ValueError(
            f"Temperature must be between {MIN_TEMPERATURE} and "
            f"{MAX_TEMPERATURE}°C, got {temperature}"
        )
    return [(ApplyKey.TEMPERATURE, str(int(temperature)))]


def build_fan_command(level: int) -> list[tuple[str, str]]:
    """Build the publish for a fan level.

    Args:
        level: FanMode.LOW, MEDIUM, or HIGH

    Raises:
        ValueError: If level is not a valid FanMode
    """
    try:
        fan = FanMode(level)
    except ValueError:
        raise ValueError(f"Invalid fan level: {level}") from None
    return [(ApplyKey.FAN, str(fan.value))]


def build_preset_commands(mode: PresetMode | str) -> list[tuple[str, str]]:
    """Build the publishes that switch the unit to a preset.

    HOME clears both override flags, AWAY and BOOST set their own flag.
    Publishes must be sent in the returned order.

    Raises:
        ValueError: If mode is not a valid PresetMode
    """
    preset = PresetMode(mode)
    if preset is PresetMode.HOME:
        return [(ApplyKey.ABSENT, FLAG_OFF), (ApplyKey.PARTY, PARTY_CLEAR)]
    if preset is PresetMode.AWAY:
        return [(ApplyKey.ABSENT, FLAG_ON)]
    return [(ApplyKey.PARTY, FLAG_ON)]
