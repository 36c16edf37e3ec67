"""Pytest configuration for Ensy MQTT tests."""

import os
from pathlib import Path

import pytest


def _load_dotenv() -> None:
    """Load .env file if it exists."""
    env_path = Path(__file__).parent.parent / ".env"
    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    os.environ.setdefault(key.strip(), value.strip())


# Load .env at import time
_load_dotenv()


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options for E2E tests."""
    parser.addoption(
        "--device-mac",
        action="store",
        default=None,
        help="MAC address of the Ensy unit for E2E tests (e.g., AA:BB:CC:XX:XX:XX)",
    )
    parser.addoption(
        "--broker-host",
        action="store",
        default=None,
        help="Override the Ensy broker hostname",
    )


@pytest.fixture
def device_mac(request: pytest.FixtureRequest) -> str | None:
    """Fixture providing the unit MAC address from CLI, env, or None."""
    return request.config.getoption("--device-mac") or os.environ.get("ENSY_DEVICE_MAC")


@pytest.fixture
def broker_host(request: pytest.FixtureRequest) -> str | None:
    """Fixture providing a broker hostname override from CLI or env."""
    return request.config.getoption("--broker-host") or os.environ.get("ENSY_BROKER_HOST")
