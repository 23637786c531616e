"""Outbound messages derived from a tick: stage changes and status snapshots."""

from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from heater_controller.control.override import OverrideMode
from heater_controller.control.state import EngineState


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StageChange(_WireModel):
    """A single relay stage switched to a new state."""

    stage_index: int
    new_state: int


class StatusSnapshot(_WireModel):
    """Full heater status published on change or when the throttle allows."""

    stages: List[int]
    soc: float
    battery_power: float
    tank_temp: float
    inverter_load: float
    manual_override: bool
    mode: OverrideMode
    timestamp: datetime

    def to_payload(self) -> str:
        """Serialize with camelCase keys and an ISO-8601 timestamp."""
        return self.model_dump_json(by_alias=True)


def stage_changes(before: List[int], after: List[int]) -> List[StageChange]:
    """List the stages whose state differs, in ascending index order."""
    return [
        StageChange(stage_index=i, new_state=new)
        for i, (old, new) in enumerate(zip(before, after))
        if old != new
    ]


def emit(
    before: List[int], state: EngineState, mode: OverrideMode, now: datetime
) -> Tuple[List[StageChange], Optional[StatusSnapshot]]:
    """Build the outbound messages for a completed tick.

    A status snapshot goes out whenever a stage changed or the status
    interval has elapsed; ``state.last_status_emit`` is updated when it does.
    """
    changes = stage_changes(before, state.stage_vector)
    now_ts = now.timestamp()

    if not changes and now_ts - state.last_status_emit < state.params.status_min_interval_seconds:
        return changes, None

    telemetry = state.telemetry
    status = StatusSnapshot(
        stages=state.stage_vector,
        soc=telemetry.soc,
        battery_power=telemetry.battery_power,
        tank_temp=telemetry.tank_temp,
        inverter_load=telemetry.inverter_load,
        manual_override=state.manual_override,
        mode=mode,
        timestamp=now,
    )
    state.last_status_emit = now_ts
    return changes, status
