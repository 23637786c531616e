"""Tests for the relay decision engine."""

import json
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from heater_controller.control.emitter import StageChange
from heater_controller.control.engine import apply_config, apply_manual_command, decide, tick
from heater_controller.control.override import OverrideMode
from heater_controller.control.parameters import ControlParameters
from heater_controller.control.state import EngineState

At = Callable[[float], datetime]


def _set_stages(state: EngineState, stages: List[int], loads: List[float]) -> None:
    for stage, value, load in zip(state.stages, stages, loads):
        stage.state = value
        stage.load = load


# ============================================================
# Automatic staging
# ============================================================


def test_stage_up_only_candidate(heating_state: EngineState, at: At) -> None:
    """Stages [1,1,0], surplus above threshold: stage 2 is the only OFF stage."""
    _set_stages(heating_state, [1, 1, 0], [300, 800, 0])
    heating_state.telemetry.battery_power = 1200

    result = tick(heating_state, at(0))

    assert heating_state.stage_vector == [1, 1, 1]
    assert result.changes == [StageChange(stage_index=2, new_state=1)]


def test_stage_up_prefers_lowest_load_and_lowest_index(heating_state: EngineState, at: At) -> None:
    _set_stages(heating_state, [0, 0, 0], [500, 100, 100])
    heating_state.telemetry.battery_power = 1500

    tick(heating_state, at(0))

    assert heating_state.stage_vector == [0, 1, 0]


def test_shedding_turns_off_highest_load_first(heating_state: EngineState, at: At) -> None:
    """Tank too hot: stage with the highest load (index 1, 800 W) goes first."""
    _set_stages(heating_state, [1, 1, 1], [300, 800, 500])
    heating_state.telemetry.tank_temp = 40.0  # >= tank_temp_max
    heating_state.telemetry.battery_power = 3000  # surplus does not matter when unsafe

    result = tick(heating_state, at(0))

    assert heating_state.stage_vector == [1, 0, 1]
    assert result.changes == [StageChange(stage_index=1, new_state=0)]


def test_shedding_waits_for_min_on_time(heating_state: EngineState, at: At) -> None:
    """Only the highest-load stage is considered; if it is still dwelling, nothing changes."""
    _set_stages(heating_state, [1, 1, 1], [300, 800, 500])
    heating_state.stages[1].last_change = at(-30).timestamp()
    heating_state.telemetry.soc = 50.0  # below min_soc

    result = tick(heating_state, at(0))

    assert heating_state.stage_vector == [1, 1, 1]
    assert not result.changed

    tick(heating_state, at(30))
    assert heating_state.stage_vector == [1, 0, 1]


@pytest.mark.parametrize(
    "field,value",
    [("soc", 69.9), ("tank_temp", 41.0), ("inverter_load", 5000.0)],
)
def test_each_safety_condition_sheds(
    heating_state: EngineState, at: At, field: str, value: float
) -> None:
    _set_stages(heating_state, [1, 0, 0], [0, 0, 0])
    heating_state.telemetry.battery_power = 2000
    setattr(heating_state.telemetry, field, value)

    tick(heating_state, at(0))

    assert heating_state.stage_vector == [0, 0, 0]


def test_stage_down_on_battery_discharge(heating_state: EngineState, at: At) -> None:
    _set_stages(heating_state, [1, 1, 0], [900, 400, 0])
    heating_state.telemetry.battery_power = -1500

    tick(heating_state, at(0))

    assert heating_state.stage_vector == [0, 1, 0]


def test_hysteresis_band_is_sticky(heating_state: EngineState, at: At) -> None:
    """500 W lies between -1000 and 1000: no transition in either direction."""
    heating_state.telemetry.battery_power = 500

    for stages in ([0, 0, 0], [1, 0, 1], [1, 1, 1]):
        _set_stages(heating_state, stages, [100, 200, 300])
        for second in range(0, 600, 15):
            result = tick(heating_state, at(second))
            assert not result.changed
        assert heating_state.stage_vector == stages


def test_no_candidate_means_no_change(heating_state: EngineState, at: At) -> None:
    _set_stages(heating_state, [1, 1, 1], [0, 0, 0])
    heating_state.telemetry.battery_power = 5000

    assert not tick(heating_state, at(0)).changed

    _set_stages(heating_state, [0, 0, 0], [0, 0, 0])
    heating_state.telemetry.battery_power = -5000

    assert not tick(heating_state, at(60)).changed


# ============================================================
# Timers
# ============================================================


def test_global_cooldown_suppresses_everything(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.battery_power = 2000
    heating_state.last_any_change = at(-5).timestamp()
    heating_state.last_status_emit = at(-100).timestamp()

    result = tick(heating_state, at(0))

    assert result.suppressed
    assert result.changes == []
    assert result.status is None
    assert heating_state.stage_vector == [0, 0, 0]
    assert heating_state.last_status_emit == at(-100).timestamp()


def test_cooldown_spaces_consecutive_stage_ups(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.battery_power = 2000

    tick(heating_state, at(0))
    assert heating_state.stage_vector == [1, 0, 0]

    assert tick(heating_state, at(9)).suppressed
    assert heating_state.stage_vector == [1, 0, 0]

    tick(heating_state, at(10))
    assert heating_state.stage_vector == [1, 1, 0]


def test_dwell_times(heating_state: EngineState, at: At) -> None:
    """A stage turned ON at T may not turn OFF before T + min_on_seconds, and vice versa."""
    heating_state.telemetry.battery_power = 2000
    tick(heating_state, at(0))
    assert heating_state.stage_vector == [1, 0, 0]

    heating_state.telemetry.battery_power = -2000
    assert not tick(heating_state, at(59)).changed
    tick(heating_state, at(60))
    assert heating_state.stage_vector == [0, 0, 0]

    # Stage 0 has the lowest index among equal loads, so it is the candidate again
    heating_state.telemetry.battery_power = 2000
    assert not tick(heating_state, at(119)).changed
    tick(heating_state, at(120))
    assert heating_state.stage_vector == [1, 0, 0]


def test_timestamps_only_move_for_the_switched_stage(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.battery_power = 2000

    tick(heating_state, at(0))

    now = at(0).timestamp()
    assert [stage.last_change for stage in heating_state.stages] == [now, 0.0, 0.0]
    assert heating_state.last_any_change == now

    heating_state.telemetry.battery_power = 0
    tick(heating_state, at(30))
    assert heating_state.last_any_change == now


# ============================================================
# Manual override
# ============================================================


def test_manual_override_forces_all_on(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.tank_temp = 90.0
    heating_state.telemetry.soc = 0.0
    heating_state.telemetry.battery_power = -5000
    apply_manual_command(heating_state, True, at(0).timestamp())

    result = tick(heating_state, at(0))

    assert heating_state.stage_vector == [1, 1, 1]
    assert [c.stage_index for c in result.changes] == [0, 1, 2]
    assert all(stage.last_change == at(0).timestamp() for stage in heating_state.stages)
    assert result.status is not None
    assert result.status.mode is OverrideMode.MANUAL
    assert result.status.manual_override is True


def test_manual_override_ignores_min_off_time(heating_state: EngineState, at: At) -> None:
    heating_state.stages[0].last_change = at(-1).timestamp()
    apply_manual_command(heating_state, True, at(0).timestamp())

    tick(heating_state, at(0))

    assert heating_state.stage_vector == [1, 1, 1]


def test_manual_override_respects_cooldown(heating_state: EngineState, at: At) -> None:
    heating_state.last_any_change = at(-3).timestamp()
    apply_manual_command(heating_state, True, at(0).timestamp())

    assert tick(heating_state, at(0)).suppressed
    assert heating_state.stage_vector == [0, 0, 0]

    tick(heating_state, at(7))
    assert heating_state.stage_vector == [1, 1, 1]


def test_manual_override_when_already_on_changes_nothing(
    heating_state: EngineState, at: At
) -> None:
    _set_stages(heating_state, [1, 1, 1], [0, 0, 0])
    apply_manual_command(heating_state, True, at(0).timestamp())

    result = tick(heating_state, at(0))

    assert not result.changed
    assert heating_state.last_any_change == 0.0


def test_manual_timeout_returns_to_auto_before_deciding(
    heating_state: EngineState, at: At
) -> None:
    heating_state.telemetry.tank_temp = 90.0
    apply_manual_command(heating_state, True, at(0).timestamp())
    tick(heating_state, at(0))

    result = tick(heating_state, at(600))
    assert heating_state.manual_override
    assert not result.changed

    result = tick(heating_state, at(601))
    assert not heating_state.manual_override
    assert heating_state.override.activated_at == 0.0
    assert result.status is not None and result.status.mode is OverrideMode.AUTO
    # Automatic logic ran on the same tick: tank too hot, one stage shed
    assert sum(heating_state.stage_vector) == 2


def test_manual_timeout_commits_even_when_cooldown_suppresses(
    heating_state: EngineState, at: At
) -> None:
    apply_manual_command(heating_state, True, at(0).timestamp())
    heating_state.last_any_change = at(605).timestamp()

    assert tick(heating_state, at(610)).suppressed
    assert not heating_state.manual_override


def test_zero_timeout_never_expires(heating_state: EngineState, at: At) -> None:
    apply_config(heating_state, {"manualTimeoutSeconds": 0})
    apply_manual_command(heating_state, True, at(0).timestamp())

    tick(heating_state, at(86400))

    assert heating_state.manual_override


def test_manual_off_resumes_automatic_control(heating_state: EngineState, at: At) -> None:
    apply_manual_command(heating_state, True, at(0).timestamp())
    tick(heating_state, at(0))

    apply_manual_command(heating_state, False, at(100).timestamp())
    heating_state.telemetry.battery_power = -2000
    tick(heating_state, at(100))

    assert not heating_state.manual_override
    assert heating_state.override.activated_at == 0.0
    assert sum(heating_state.stage_vector) == 2


# ============================================================
# Schedule gate
# ============================================================


def test_outside_window_sheds(heating_state: EngineState) -> None:
    _set_stages(heating_state, [1, 0, 0], [0, 0, 0])
    heating_state.telemetry.battery_power = 3000
    evening = datetime(2025, 6, 15, 21, 0, tzinfo=timezone.utc)

    tick(heating_state, evening)

    assert heating_state.stage_vector == [0, 0, 0]


def test_invalid_schedule_fails_closed(
    heating_state: EngineState, at: At, caplog: pytest.LogCaptureFixture
) -> None:
    heating_state.params = ControlParameters(schedule_start="sunrise")
    heating_state.telemetry.battery_power = 3000

    result = tick(heating_state, at(0))

    assert not result.changed
    assert heating_state.stage_vector == [0, 0, 0]
    assert "treating as outside window" in caplog.text


# ============================================================
# Status emission
# ============================================================


def test_status_throttle(heating_state: EngineState, at: At) -> None:
    statuses = [tick(heating_state, at(second)).status for second in range(13)]

    emitted = [i for i, status in enumerate(statuses) if status is not None]
    assert emitted == [0, 5, 10]


def test_status_emitted_on_change_despite_throttle(heating_state: EngineState, at: At) -> None:
    heating_state.last_status_emit = at(0).timestamp()
    heating_state.telemetry.battery_power = 2000

    result = tick(heating_state, at(1))

    assert result.changed
    assert result.status is not None
    assert heating_state.last_status_emit == at(1).timestamp()


def test_status_payload_contract(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.battery_power = 1234.0

    result = tick(heating_state, at(0))

    assert result.status is not None
    payload = json.loads(result.status.to_payload())
    assert set(payload) == {
        "stages",
        "soc",
        "batteryPower",
        "tankTemp",
        "inverterLoad",
        "manualOverride",
        "mode",
        "timestamp",
    }
    assert payload["stages"] == [1, 0, 0]
    assert payload["batteryPower"] == 1234.0
    assert payload["mode"] == "AUTO"
    assert payload["manualOverride"] is False
    assert datetime.fromisoformat(payload["timestamp"].replace("Z", "+00:00")) == at(0)


# ============================================================
# Invariants over random input sequences
# ============================================================


def test_random_sequences_keep_invariants(heating_state: EngineState, at: At) -> None:
    rng = random.Random(1234)
    now = 0.0
    manual_was_on = False

    for _ in range(2000):
        now += rng.choice([0.5, 1, 2, 5, 11, 30, 61])
        telemetry = heating_state.telemetry
        telemetry.battery_power = rng.uniform(-3000, 3000)
        telemetry.soc = rng.uniform(40, 100)
        telemetry.tank_temp = rng.uniform(20, 50)
        telemetry.inverter_load = rng.uniform(0, 6000)
        for stage in heating_state.stages:
            stage.load = rng.choice([0, 100, 500, 900])
        if rng.random() < 0.01:
            manual_was_on = rng.random() < 0.5
            apply_manual_command(heating_state, manual_was_on, at(now).timestamp())

        before = [(s.state, s.last_change) for s in heating_state.stages]
        last_any = heating_state.last_any_change
        result = tick(heating_state, at(now))
        after = [(s.state, s.last_change) for s in heating_state.stages]

        changed = [i for i in range(3) if before[i][0] != after[i][0]]
        assert all(s.state in (0, 1) for s in heating_state.stages)
        assert [c.stage_index for c in result.changes] == changed
        assert (heating_state.last_any_change != last_any) == bool(changed)
        assert heating_state.manual_override == (heating_state.override.activated_at != 0)

        if not heating_state.manual_override:
            assert len(changed) <= 1
            for i in range(3):
                assert (before[i][1] != after[i][1]) == (i in changed)
        if result.suppressed:
            assert not changed and result.status is None


def test_decide_returns_whether_anything_changed(heating_state: EngineState, at: At) -> None:
    heating_state.telemetry.battery_power = 2000
    assert decide(heating_state, at(0)) is True
    heating_state.telemetry.battery_power = 0
    assert decide(heating_state, at(0) + timedelta(seconds=20)) is False
