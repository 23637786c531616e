"""Relay decision engine.

One call to :func:`tick` evaluates the committed state at an injected time
and switches at most one stage (manual override switches all stages on in a
single step). The caller owns the :class:`EngineState`, serializes ticks and
publishes the returned messages.

Order inside a tick:

1. manual override timeout
2. global anti-chatter cooldown (suppresses the whole tick)
3. manual branch, or the automatic safety gate plus hysteresis
4. stage-change and status emission
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional

from heater_controller.control.emitter import StageChange, StatusSnapshot, emit
from heater_controller.control.override import OverrideEvent, transition
from heater_controller.control.parameters import merge_parameters
from heater_controller.control.schedule import is_within_window
from heater_controller.control.state import STAGE_COUNT, EngineState
from heater_controller.control.timers import can_turn_off, can_turn_on, global_cooldown_active

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Outcome of one tick."""

    suppressed: bool = False
    changes: List[StageChange] = field(default_factory=list)
    status: Optional[StatusSnapshot] = None

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def apply_config(state: EngineState, partial: Mapping[str, Any]) -> List[str]:
    """Merge a partial config update into the state.

    Returns:
        The keys that were rejected.
    """
    params, accepted, rejected = merge_parameters(state.params, partial)
    state.params = params
    if accepted:
        logger.info(f"Config updated: {', '.join(accepted)}")
    return rejected


def apply_manual_command(state: EngineState, active: bool, now: float) -> None:
    """Switch the override FSM on an explicit operator command."""
    event = OverrideEvent.ENABLE if active else OverrideEvent.DISABLE
    state.override = transition(
        state.override, event, now, state.params.manual_timeout_seconds
    )


def heating_allowed(state: EngineState, now: datetime) -> bool:
    """Return True if schedule, SoC, tank temperature and inverter load all permit heating."""
    params = state.params
    telemetry = state.telemetry

    try:
        in_window = is_within_window(now, params.schedule_start, params.schedule_end)
    except ValueError as e:
        logger.warning(
            f"Invalid schedule {params.schedule_start!r}-{params.schedule_end!r}, "
            f"treating as outside window: {e}"
        )
        in_window = False

    return (
        in_window
        and telemetry.soc >= params.min_soc
        and telemetry.tank_temp < params.tank_temp_max
        and telemetry.inverter_load < params.inverter_load_max
    )


def _pick_stage(state: EngineState, on: bool) -> Optional[int]:
    """Pick the stage to switch.

    To switch one on, the OFF stage with the lowest load; to switch one
    off, the ON stage with the highest load. Ties go to the lowest index.
    """
    candidates = [i for i, stage in enumerate(state.stages) if stage.is_on != on]
    if not candidates:
        return None
    if on:
        return min(candidates, key=lambda i: state.stages[i].load)
    return max(candidates, key=lambda i: state.stages[i].load)


def _switch(state: EngineState, index: int, value: int, now: float) -> None:
    stage = state.stages[index]
    stage.state = value
    stage.last_change = now
    state.last_any_change = now
    logger.info(
        f"Stage {index} -> {'ON' if value else 'OFF'} (load {stage.load:.0f} W, "
        f"battery {state.telemetry.battery_power:.0f} W, SoC {state.telemetry.soc:.0f}%)"
    )


def _stage_up(state: EngineState, now: float) -> bool:
    index = _pick_stage(state, on=True)
    if index is None:
        return False
    if not can_turn_on(state.stages[index], now, state.params):
        logger.debug(f"Stage {index} still in minimum OFF time")
        return False
    _switch(state, index, 1, now)
    return True


def _stage_down(state: EngineState, now: float) -> bool:
    index = _pick_stage(state, on=False)
    if index is None:
        return False
    if not can_turn_off(state.stages[index], now, state.params):
        logger.debug(f"Stage {index} still in minimum ON time")
        return False
    _switch(state, index, 0, now)
    return True


def _force_all_on(state: EngineState, now: float) -> bool:
    if all(stage.is_on for stage in state.stages):
        return False
    for stage in state.stages:
        stage.state = 1
        stage.last_change = now
    state.last_any_change = now
    logger.info(f"Manual override: all {STAGE_COUNT} stages ON")
    return True


def decide(state: EngineState, now: datetime) -> bool:
    """Apply at most one transition to ``state``.

    Returns:
        True if any stage changed.
    """
    now_ts = now.timestamp()

    if state.override.active:
        return _force_all_on(state, now_ts)

    if not heating_allowed(state, now):
        return _stage_down(state, now_ts)

    battery_power = state.telemetry.battery_power
    if battery_power > state.params.on_threshold:
        return _stage_up(state, now_ts)
    if battery_power < state.params.off_threshold:
        return _stage_down(state, now_ts)
    return False


def tick(state: EngineState, now: datetime) -> TickResult:
    """Run one processing cycle at time ``now`` (timezone-aware local time)."""
    now_ts = now.timestamp()

    state.override = transition(
        state.override, OverrideEvent.TICK, now_ts, state.params.manual_timeout_seconds
    )

    if global_cooldown_active(state, now_ts):
        return TickResult(suppressed=True)

    before = state.stage_vector
    mode = state.override.mode
    decide(state, now)
    changes, status = emit(before, state, mode, now)
    return TickResult(changes=changes, status=status)
