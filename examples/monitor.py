#!/usr/bin/env python3
"""Monitor example for ensy-mqtt.

This example shows how to:
1. Check that a unit is reachable
2. Connect and print every state change
3. Display the full state using metadata
4. Change the preset (commented out)

Requirements:
    pip install ensy-mqtt

Usage:
    python monitor.py MAC_ADDRESS [SECONDS]
"""

import asyncio
import logging
import sys

from ensy_mqtt import (
    Connected,
    Disconnected,
    EnsyClient,
    Error,
    StateUpdate,
    changed_fields,
    format_sensors,
)


def on_event(event) -> None:
    if isinstance(event, StateUpdate):
        for name in changed_fields(event.previous, event.current):
            print(f"  {name}: {getattr(event.previous, name)} -> {getattr(event.current, name)}")
    elif isinstance(event, Connected):
        print("Connected")
    elif isinstance(event, Disconnected):
        print("Disconnected, reconnecting...")
    elif isinstance(event, Error):
        print(f"Error: {event.reason}")


async def main(address: str, seconds: float = 30.0):
    print(f"Checking {address}...")
    if not await EnsyClient.test_connectivity(address):
        print("Unit did not answer. Make sure:")
        print("  - The MAC address is correct")
        print("  - The unit is powered on and online in the Ensy app")
        return

    async with EnsyClient(address) as client:
        client.subscribe(on_event)
        await asyncio.sleep(seconds)

        print(f"\n--- Unit {client.device_id} ---")
        print(format_sensors(client.state, enabled_only=False))

        # Example: Change preset (commented out for safety)
        # await client.set_preset_mode(PresetMode.BOOST)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    logging.basicConfig(level=logging.INFO)
    seconds = float(sys.argv[2]) if len(sys.argv) > 2 else 30.0
    asyncio.run(main(sys.argv[1], seconds))
