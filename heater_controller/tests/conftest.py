"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Dict
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from heater_controller.config.settings import Settings
from heater_controller.control.state import EngineState

# Midday, inside the default 06:00-20:00 window
BASE_TIME = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def at() -> Callable[[float], datetime]:
    """Return a helper producing BASE_TIME + n seconds."""

    def _at(seconds: float) -> datetime:
        return BASE_TIME + timedelta(seconds=seconds)

    return _at


@pytest.fixture
def heating_state() -> EngineState:
    """State where every safety condition allows heating and all timers are expired."""
    state = EngineState()
    state.telemetry.soc = 85.0
    state.telemetry.tank_temp = 30.0
    state.telemetry.inverter_load = 1500.0
    state.telemetry.battery_power = 0.0
    return state


@pytest.fixture
def test_env() -> Dict[str, str]:
    """Environment for building real Settings in tests."""
    return {
        "MQTT_BROKER": "localhost",
        "LOG_LEVEL": "INFO",
        "LOG_TIMEZONE": "Europe/Prague",
        "HEATER_TIMEZONE": "Europe/Prague",
    }


@pytest.fixture
def mock_settings(test_env: Dict[str, str]) -> Settings:
    """Create settings for testing."""
    with patch.dict("os.environ", test_env):
        return Settings()


@pytest_asyncio.fixture
async def mock_mqtt_client(mock_settings: Settings) -> AsyncGenerator[MagicMock, None]:
    """Create a mock MQTT client."""
    client = MagicMock()
    client.settings = mock_settings
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.publish = AsyncMock()
    client.subscribe = AsyncMock()

    yield client


@pytest.fixture
def mock_influxdb_client(mock_settings: Settings) -> MagicMock:
    """Create a mock InfluxDB client."""
    client = MagicMock()
    client.settings = mock_settings
    client.start = AsyncMock()
    client.stop = AsyncMock()
    client.write_point = AsyncMock()

    return client
