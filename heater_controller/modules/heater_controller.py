"""Heater controller module - drives three relay stages from live energy telemetry."""

import asyncio
import copy
import json
import zoneinfo
from datetime import datetime
from typing import Any, Callable, List, Optional

from heater_controller.config.settings import Settings
from heater_controller.control.emitter import StatusSnapshot
from heater_controller.control.engine import TickResult, apply_config, apply_manual_command, tick
from heater_controller.control.state import EngineState, apply_reading
from heater_controller.modules.base import BaseModule
from heater_controller.utils.async_influxdb_client import AsyncInfluxDBClient
from heater_controller.utils.async_mqtt_client import AsyncMQTTClient
from heater_controller.utils.state_store import StateStore

EventHandler = Callable[[EngineState, datetime], None]

_FALSY_STRINGS = {"", "0", "false", "off", "no"}


def parse_number(payload: str) -> Optional[float]:
    """Extract a numeric reading from an MQTT payload.

    Accepts a bare JSON number or a Victron-style ``{"value": ...}`` object.
    Anything else (including ``null``) yields None.
    """
    try:
        value = json.loads(payload)
    except json.JSONDecodeError:
        return None

    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_flag(payload: str) -> bool:
    """Interpret a manual command payload as on/off."""
    try:
        value: Any = json.loads(payload)
    except json.JSONDecodeError:
        value = payload

    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    return bool(value)


class HeaterController(BaseModule):
    """Runs the relay decision engine once per inbound event and publishes the outcome."""

    def __init__(
        self,
        mqtt_client: AsyncMQTTClient,
        settings: Settings,
        influxdb_client: Optional[AsyncInfluxDBClient] = None,
    ) -> None:
        """Initialize the heater controller."""
        super().__init__(
            name="HeaterController",
            service_name="HEATER",
            mqtt_client=mqtt_client,
            influxdb_client=influxdb_client,
            settings=settings,
        )
        self.config = settings.heater
        self._local_tz = zoneinfo.ZoneInfo(self.config.timezone)
        self._sensor_topics = self.config.sensor_topics

        self.state_store = StateStore(self.config.state_file) if self.config.state_file else None
        self.state = self.state_store.load() if self.state_store else EngineState()

        # Ticks must not interleave: MQTT callbacks run concurrently
        self._tick_lock = asyncio.Lock()
        self._tick_task: Optional[asyncio.Task[None]] = None

    def _get_local_now(self) -> datetime:
        """Get current time in local timezone."""
        return datetime.now(self._local_tz)

    @property
    def topics(self) -> List[str]:
        """All inbound topics this module listens on."""
        return [*self._sensor_topics, self.config.topic_config, self.config.topic_manual]

    async def start(self) -> None:
        """Subscribe to inbound topics and start the periodic tick if configured."""
        if self.mqtt_client is None:
            self.logger.error("MQTT client not available")
            return

        for topic in self.topics:
            await self.mqtt_client.subscribe(topic, self.on_mqtt_message)
            self.logger.info(f"Subscribed to topic: {topic}")

        if self.config.tick_interval > 0:
            self._tick_task = asyncio.create_task(self._tick_loop())

        mode = "SIMULATION" if self.config.simulation_mode else "LIVE"
        self.logger.info(
            f"Heater controller started ({mode}), stages={self.state.stage_vector}, "
            f"mode={self.state.override.mode.value}"
        )

    async def stop(self) -> None:
        """Stop the periodic tick and persist the state."""
        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
        self._tick_task = None

        self._save_state()
        self.logger.info(f"Heater controller stopped, stages={self.state.stage_vector}")

    async def on_mqtt_message(self, topic: str, payload: str) -> None:
        """Apply an inbound message and run a tick."""
        self.logger.debug(f"Received {topic}: {payload}")
        await self.process(lambda state, now: self._apply_message(state, topic, payload, now))

    async def _tick_loop(self) -> None:
        """Deliver bare ticks so timeouts and the status throttle advance."""
        while True:
            await asyncio.sleep(self.config.tick_interval)
            await self.process()

    async def process(self, handler: Optional[EventHandler] = None) -> Optional[TickResult]:
        """Apply ``handler`` to the state, tick, commit and publish.

        The tick works on a copy; if anything raises, the committed state is
        kept and nothing is published.
        """
        async with self._tick_lock:
            now = self._get_local_now()
            candidate = copy.deepcopy(self.state)
            try:
                if handler is not None:
                    handler(candidate, now)
                result = tick(candidate, now)
            except Exception as e:
                self.logger.error(f"Tick failed, state left unchanged: {e}", exc_info=True)
                return None

            self.state = candidate
            await self._publish(result)
            self._save_state()
            return result

    def _apply_message(self, state: EngineState, topic: str, payload: str, now: datetime) -> None:
        """Route an inbound message to the matching state update."""
        if topic == self.config.topic_config:
            try:
                update = json.loads(payload)
            except json.JSONDecodeError:
                self.logger.warning(f"Invalid JSON config payload: {payload}")
                return
            if not isinstance(update, dict):
                self.logger.warning(f"Config payload is not an object: {payload}")
                return
            rejected = apply_config(state, update)
            if rejected:
                self.logger.warning(f"Config keys rejected: {', '.join(rejected)}")
            return

        if topic == self.config.topic_manual:
            apply_manual_command(state, parse_flag(payload), now.timestamp())
            return

        channel = self._sensor_topics.get(topic)
        if channel is None:
            self.logger.debug(f"Ignoring message on unmapped topic {topic}")
            return

        value = parse_number(payload)
        if value is None:
            self.logger.warning(f"Unusable reading on {topic}: {payload!r}, keeping last value")
            return
        apply_reading(state, channel, value)

    async def _publish(self, result: TickResult) -> None:
        """Send stage changes and the status snapshot."""
        if result.suppressed:
            self.logger.debug("Global cooldown active, no output")
            return

        for change in result.changes:
            topic = self.config.relay_topic(change.stage_index)
            if self.config.simulation_mode:
                self.logger.info(f"[SIMULATE] {topic} <- {change.new_state}")
                continue
            assert self.mqtt_client is not None
            await self.mqtt_client.publish(topic, str(change.new_state))
            self.logger.info(f"Relay {change.stage_index} set to {change.new_state} → {topic}")

        if result.status is not None:
            await self._publish_status(result.status)

    async def _publish_status(self, status: StatusSnapshot) -> None:
        payload = status.to_payload()
        if self.config.simulation_mode:
            self.logger.info(f"[SIMULATE] {self.config.topic_status} <- {payload}")
        else:
            assert self.mqtt_client is not None
            await self.mqtt_client.publish(self.config.topic_status, payload)

        if self.influxdb_client is not None:
            fields = {f"stage_{i}": value for i, value in enumerate(status.stages)}
            fields.update(
                soc=status.soc,
                battery_power=status.battery_power,
                tank_temp=status.tank_temp,
                inverter_load=status.inverter_load,
                manual_override=status.manual_override,
            )
            await self.influxdb_client.write_point(
                measurement="heater_status",
                fields=fields,
                tags={"mode": status.mode.value},
                timestamp=status.timestamp,
            )

    def _save_state(self) -> None:
        if self.state_store is None:
            return
        try:
            self.state_store.save(self.state)
        except OSError as e:
            self.logger.error(f"Failed to save state to {self.state_store.path}: {e}")
