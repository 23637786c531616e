"""Control parameters for the staged heater engine."""

import logging
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class ControlParameters(BaseModel):
    """Thresholds and timers used by the relay decision engine.

    Instances are immutable; updates produce a new instance through
    :func:`merge_parameters`. Field names on the wire are camelCase
    (``onThreshold``, ``minOnSeconds``, ...).
    """

    model_config = ConfigDict(
        frozen=True,
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    on_threshold: float = 1000.0  # W, battery power above this stages up
    off_threshold: float = -1000.0  # W, battery power below this stages down
    min_soc: float = 70.0  # %
    tank_temp_max: float = 40.0
    inverter_load_max: float = 5000.0  # W
    min_on_seconds: float = Field(default=60.0, ge=0)
    min_off_seconds: float = Field(default=60.0, ge=0)
    min_any_change_seconds: float = Field(default=10.0, ge=0)
    status_min_interval_seconds: float = Field(default=5.0, ge=0)
    manual_timeout_seconds: float = Field(default=600.0, ge=0)
    schedule_start: str = "06:00"
    schedule_end: str = "20:00"


def _field_lookup() -> Dict[str, str]:
    """Map both wire aliases and attribute names to attribute names."""
    lookup: Dict[str, str] = {}
    for name, info in ControlParameters.model_fields.items():
        lookup[name] = name
        if info.alias:
            lookup[info.alias] = name
    return lookup


_FIELDS = _field_lookup()


def merge_parameters(
    current: ControlParameters, partial: Mapping[str, Any]
) -> Tuple[ControlParameters, List[str], List[str]]:
    """Shallow-merge ``partial`` over ``current``.

    Each key is validated on its own: unknown keys are ignored and a value
    that fails validation keeps the previous value without affecting the
    other keys.

    Returns:
        The merged parameters, the accepted field names and the rejected keys.
    """
    values = current.model_dump()
    accepted: List[str] = []
    rejected: List[str] = []

    for key, value in partial.items():
        name = _FIELDS.get(key)
        if name is None:
            logger.debug(f"Ignoring unknown config key: {key}")
            continue

        candidate = {**values, name: value}
        try:
            ControlParameters.model_validate(candidate)
        except ValidationError as e:
            rejected.append(key)
            logger.warning(
                f"Rejected config value {key}={value!r}: {e.errors()[0]['msg']}"
            )
            continue

        values = candidate
        accepted.append(name)

    return ControlParameters.model_validate(values), accepted, rejected
