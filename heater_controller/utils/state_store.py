"""JSON file persistence for the engine state."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from pydantic import TypeAdapter, ValidationError

from heater_controller.control.state import STAGE_COUNT, EngineState

_ADAPTER = TypeAdapter(EngineState)


class StateStore:
    """Saves and restores the full :class:`EngineState` as JSON."""

    def __init__(self, path: Union[str, Path]) -> None:
        """Initialize the store for ``path``."""
        self.path = Path(path)
        self.logger = logging.getLogger(f"{__name__}.StateStore")

    def load(self) -> EngineState:
        """Return the saved state, or a fresh default state if none is usable."""
        if not self.path.exists():
            self.logger.info(f"No saved state at {self.path}, starting with defaults")
            return EngineState()

        try:
            state = _ADAPTER.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            self.logger.warning(f"Could not restore state from {self.path}, using defaults: {e}")
            return EngineState()

        if len(state.stages) != STAGE_COUNT:
            self.logger.warning(
                f"Saved state has {len(state.stages)} stages, expected {STAGE_COUNT}; "
                f"using defaults"
            )
            return EngineState()

        self.logger.info(f"Restored state from {self.path}: stages={state.stage_vector}")
        return state

    def save(self, state: EngineState) -> None:
        """Write the state atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_ADAPTER.dump_json(state, indent=2))
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
