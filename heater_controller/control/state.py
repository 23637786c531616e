"""Persistent engine state: stage records, telemetry and timers."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from heater_controller.control.override import OverrideState
from heater_controller.control.parameters import ControlParameters

logger = logging.getLogger(__name__)

STAGE_COUNT = 3


class TelemetryChannel(str, Enum):
    """Sensor channels consumed by the engine."""

    BATTERY_POWER = "battery_power"
    SOC = "soc"
    LOAD_L1 = "load_l1"
    LOAD_L2 = "load_l2"
    LOAD_L3 = "load_l3"
    TANK_TEMP = "tank_temp"
    INVERTER_LOAD = "inverter_load"


_LOAD_CHANNELS = {
    TelemetryChannel.LOAD_L1: 0,
    TelemetryChannel.LOAD_L2: 1,
    TelemetryChannel.LOAD_L3: 2,
}


@dataclass
class StageRecord:
    """One relay stage: ON/OFF state, last toggle time and last reported load."""

    state: int = 0
    last_change: float = 0.0
    load: float = 0.0

    @property
    def is_on(self) -> bool:
        return self.state == 1


@dataclass
class Telemetry:
    """Last known sensor readings."""

    battery_power: float = 0.0  # W, positive = surplus flowing into the battery
    soc: float = 0.0  # %
    tank_temp: float = 0.0
    inverter_load: float = 0.0  # W


def _default_stages() -> List[StageRecord]:
    return [StageRecord() for _ in range(STAGE_COUNT)]


@dataclass
class EngineState:
    """Everything the engine needs between ticks.

    Timestamps are POSIX seconds; 0 means "never".
    """

    stages: List[StageRecord] = field(default_factory=_default_stages)
    telemetry: Telemetry = field(default_factory=Telemetry)
    override: OverrideState = field(default_factory=OverrideState)
    params: ControlParameters = field(default_factory=ControlParameters)
    last_any_change: float = 0.0
    last_status_emit: float = 0.0

    @property
    def stage_vector(self) -> List[int]:
        """Return the ON/OFF state of every stage in index order."""
        return [stage.state for stage in self.stages]

    @property
    def manual_override(self) -> bool:
        return self.override.active


def apply_reading(state: EngineState, channel: TelemetryChannel, value: Any) -> bool:
    """Store a sensor reading.

    Missing (``None``) or non-numeric values leave the previous reading in
    place. Range is not checked.

    Returns:
        True if the reading was stored.
    """
    if value is None:
        return False
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning(f"Ignoring non-numeric reading for {channel.value}: {value!r}")
        return False

    reading = float(value)
    if channel in _LOAD_CHANNELS:
        state.stages[_LOAD_CHANNELS[channel]].load = reading
    else:
        setattr(state.telemetry, channel.value, reading)
    return True
