"""Configuration settings for the heater controller using Pydantic."""

from typing import Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from heater_controller.control.state import TelemetryChannel


class ModuleConfig(BaseModel):
    """Configuration for which modules are enabled."""

    heater_controller_enabled: bool = True
    influxdb_enabled: bool = False


class MQTTConfig(BaseModel):
    """MQTT configuration."""

    broker: str = "mqtt"
    port: int = Field(default=1883, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "heater-controller"


class InfluxDBConfig(BaseModel):
    """InfluxDB configuration."""

    url: str = "http://influxdb:8086"
    token: str = ""
    org: str = "home"
    bucket: str = "heater"

    # Write options
    batch_size: int = Field(default=500, ge=1)
    flush_interval: float = Field(default=1.0, gt=0)  # seconds


class HeaterConfig(BaseModel):
    """Heater controller configuration: topic map and host behaviour."""

    # Inbound sensor topics (Victron / Node-RED wiring)
    topic_battery_power: str = "/Dc/Battery/Power"
    topic_soc: str = "/Dc/Battery/Soc"
    topic_load_l1: str = "/Ac/L1/Power"
    topic_load_l2: str = "/Ac/L2/Power"
    topic_load_l3: str = "/Ac/L3/Power"
    topic_tank_temp: str = "/Boiler/Temp"
    topic_inverter_load: str = "/Inverter/Load"

    # Control topics
    topic_config: str = "/Heater/Config"
    topic_manual: str = "/Heater/Manual"

    # Outbound topics
    topic_relay_template: str = "/Relay/{index}/State"
    topic_status: str = "/Heater/Status"

    # Local timezone for the operating window
    timezone: str = "Europe/Prague"

    # Bare tick interval in seconds, 0 disables the periodic tick
    tick_interval: float = Field(default=0.0, ge=0)

    # JSON file holding engine state across restarts, None disables persistence
    state_file: Optional[str] = None

    # Compute and log decisions without publishing
    simulation_mode: bool = False

    @property
    def sensor_topics(self) -> Dict[str, TelemetryChannel]:
        """Map each inbound sensor topic to its telemetry channel."""
        return {
            self.topic_battery_power: TelemetryChannel.BATTERY_POWER,
            self.topic_soc: TelemetryChannel.SOC,
            self.topic_load_l1: TelemetryChannel.LOAD_L1,
            self.topic_load_l2: TelemetryChannel.LOAD_L2,
            self.topic_load_l3: TelemetryChannel.LOAD_L3,
            self.topic_tank_temp: TelemetryChannel.TANK_TEMP,
            self.topic_inverter_load: TelemetryChannel.INVERTER_LOAD,
        }

    def relay_topic(self, index: int) -> str:
        """Return the outbound topic for a relay stage."""
        return self.topic_relay_template.format(index=index)


class Settings(BaseSettings):
    """Main settings class using Pydantic Settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General settings
    log_level: str = Field(
        default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )
    log_timezone: str = Field(
        default="Europe/Prague", description="Timezone for log timestamps"
    )

    # Module configuration
    heater_controller_enabled: bool = True
    influxdb_enabled: bool = False

    # Service configurations
    mqtt_broker: str = "mqtt"
    mqtt_port: int = Field(default=1883, ge=1, le=65535)
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id: str = "heater-controller"

    influxdb_url: str = Field(default="http://influxdb:8086", alias="INFLUXDB_HOST")
    influxdb_token: str = ""
    influxdb_org: str = "home"
    influxdb_bucket: str = Field(default="heater", alias="INFLUXDB_BUCKET")
    influxdb_batch_size: int = Field(default=500, ge=1)
    influxdb_flush_interval: float = Field(default=1.0, gt=0)

    heater_timezone: str = "Europe/Prague"
    heater_tick_interval: float = Field(default=0.0, ge=0)
    heater_state_file: Optional[str] = None
    heater_simulation_mode: bool = False
    heater_topic_battery_power: str = "/Dc/Battery/Power"
    heater_topic_soc: str = "/Dc/Battery/Soc"
    heater_topic_load_l1: str = "/Ac/L1/Power"
    heater_topic_load_l2: str = "/Ac/L2/Power"
    heater_topic_load_l3: str = "/Ac/L3/Power"
    heater_topic_tank_temp: str = "/Boiler/Temp"
    heater_topic_inverter_load: str = "/Inverter/Load"
    heater_topic_config: str = "/Heater/Config"
    heater_topic_manual: str = "/Heater/Manual"
    heater_topic_relay_template: str = "/Relay/{index}/State"
    heater_topic_status: str = "/Heater/Status"

    @property
    def modules(self) -> ModuleConfig:
        """Get module configuration."""
        return ModuleConfig(
            heater_controller_enabled=self.heater_controller_enabled,
            influxdb_enabled=self.influxdb_enabled,
        )

    @property
    def mqtt(self) -> MQTTConfig:
        """Get MQTT configuration."""
        return MQTTConfig(
            broker=self.mqtt_broker,
            port=self.mqtt_port,
            username=self.mqtt_username,
            password=self.mqtt_password,
            client_id=self.mqtt_client_id,
        )

    @property
    def influxdb(self) -> InfluxDBConfig:
        """Get InfluxDB configuration."""
        return InfluxDBConfig(
            url=self.influxdb_url,
            token=self.influxdb_token,
            org=self.influxdb_org,
            bucket=self.influxdb_bucket,
            batch_size=self.influxdb_batch_size,
            flush_interval=self.influxdb_flush_interval,
        )

    @property
    def heater(self) -> HeaterConfig:
        """Get heater controller configuration."""
        return HeaterConfig(
            topic_battery_power=self.heater_topic_battery_power,
            topic_soc=self.heater_topic_soc,
            topic_load_l1=self.heater_topic_load_l1,
            topic_load_l2=self.heater_topic_load_l2,
            topic_load_l3=self.heater_topic_load_l3,
            topic_tank_temp=self.heater_topic_tank_temp,
            topic_inverter_load=self.heater_topic_inverter_load,
            topic_config=self.heater_topic_config,
            topic_manual=self.heater_topic_manual,
            topic_relay_template=self.heater_topic_relay_template,
            topic_status=self.heater_topic_status,
            timezone=self.heater_timezone,
            tick_interval=self.heater_tick_interval,
            state_file=self.heater_state_file,
            simulation_mode=self.heater_simulation_mode,
        )
