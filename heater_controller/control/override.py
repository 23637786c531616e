"""Manual override state machine (AUTO <-> MANUAL with timeout)."""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class OverrideMode(str, Enum):
    """Operating mode of the heater."""

    AUTO = "AUTO"
    MANUAL = "MANUAL"


class OverrideEvent(Enum):
    """Inputs to the override state machine."""

    ENABLE = "enable"  # manual command with truthy payload
    DISABLE = "disable"  # manual command with falsy payload
    TICK = "tick"  # periodic check for timeout expiry


@dataclass(frozen=True)
class OverrideState:
    """Current override mode and the time it was entered (0 in AUTO)."""

    mode: OverrideMode = OverrideMode.AUTO
    activated_at: float = 0.0

    @property
    def active(self) -> bool:
        """Return True while manual override forces all stages on."""
        return self.mode is OverrideMode.MANUAL


def transition(
    state: OverrideState, event: OverrideEvent, now: float, timeout_seconds: float
) -> OverrideState:
    """Return the override state after ``event`` at time ``now``.

    A truthy command always (re)arms the timeout. Expiry needs a positive
    timeout and strictly more than ``timeout_seconds`` elapsed.
    """
    if event is OverrideEvent.ENABLE:
        logger.info("Manual override enabled: forcing all stages ON")
        return OverrideState(OverrideMode.MANUAL, now)

    if event is OverrideEvent.DISABLE:
        if state.active:
            logger.info("Manual override disabled: back to AUTO")
        return OverrideState()

    if state.active and timeout_seconds > 0 and now - state.activated_at > timeout_seconds:
        logger.info(f"Manual override timed out after {timeout_seconds:.0f}s: back to AUTO")
        return OverrideState()

    return state
