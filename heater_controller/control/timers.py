"""Dwell-time and anti-chatter checks."""

from heater_controller.control.parameters import ControlParameters
from heater_controller.control.state import EngineState, StageRecord


def can_turn_on(stage: StageRecord, now: float, params: ControlParameters) -> bool:
    """Return True once the stage has been OFF for at least ``min_off_seconds``."""
    return now - stage.last_change >= params.min_off_seconds


def can_turn_off(stage: StageRecord, now: float, params: ControlParameters) -> bool:
    """Return True once the stage has been ON for at least ``min_on_seconds``."""
    return now - stage.last_change >= params.min_on_seconds


def global_cooldown_active(state: EngineState, now: float) -> bool:
    """Return True while the last stage toggle is too recent for any new one."""
    return now - state.last_any_change < state.params.min_any_change_seconds
