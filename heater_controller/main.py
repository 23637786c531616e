#!/usr/bin/env python3
"""Heater Controller - staged PV surplus heater service.

Runs the relay decision engine as an async MQTT service.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, List, Optional

from dotenv import load_dotenv

from heater_controller.config.settings import Settings
from heater_controller.modules.heater_controller import HeaterController
from heater_controller.utils.async_influxdb_client import AsyncInfluxDBClient
from heater_controller.utils.async_mqtt_client import AsyncMQTTClient
from heater_controller.utils.logging import setup_root_logging


class HeaterControllerApp:
    """Main application class that manages all modules."""

    def __init__(self) -> None:
        """Initialize the application."""
        self.settings = Settings()
        setup_root_logging(self.settings.log_level, self.settings.log_timezone)

        # Shared clients
        self.mqtt_client = AsyncMQTTClient(self.settings)
        self.influxdb_client: Optional[AsyncInfluxDBClient] = (
            AsyncInfluxDBClient(self.settings) if self.settings.modules.influxdb_enabled else None
        )

        # Modules
        self.modules: List[asyncio.Task[None]] = []
        self.heater_controller: Optional[HeaterController] = None

        # Shutdown event
        self.shutdown_event = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task[None]] = None

    async def initialize_modules(self) -> None:
        """Connect shared clients and create enabled modules."""
        logger = logging.getLogger(__name__)

        await self.mqtt_client.connect()
        logger.info("MQTT client connected")

        if self.influxdb_client is not None:
            await self.influxdb_client.start()
            logger.info("InfluxDB client started")

        if self.settings.modules.heater_controller_enabled:
            self.heater_controller = HeaterController(
                self.mqtt_client, self.settings, influxdb_client=self.influxdb_client
            )
            logger.info("Heater Controller module initialized")

    async def start_modules(self) -> None:
        """Start all enabled modules."""
        logger = logging.getLogger(__name__)

        if self.heater_controller:
            task = asyncio.create_task(self.heater_controller.run(self.shutdown_event))
            self.modules.append(task)
            logger.info("Heater Controller started")

    async def shutdown(self) -> None:
        """Gracefully shutdown all modules."""
        logger = logging.getLogger(__name__)
        logger.info("Initiating shutdown...")

        self.shutdown_event.set()

        if self.modules:
            await asyncio.gather(*self.modules, return_exceptions=True)

        await self.mqtt_client.disconnect()
        if self.influxdb_client is not None:
            await self.influxdb_client.stop()

        logger.info("Shutdown complete")

    def handle_signal(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals."""
        logger = logging.getLogger(__name__)
        logger.info(f"Received signal {signum}")
        self._shutdown_task = asyncio.create_task(self.shutdown())

    async def run(self) -> None:
        """Run the main application loop."""
        logger = logging.getLogger(__name__)

        try:
            signal.signal(signal.SIGINT, self.handle_signal)
            signal.signal(signal.SIGTERM, self.handle_signal)

            await self.initialize_modules()
            await self.start_modules()

            logger.info("Heater Controller is running...")

            await self.shutdown_event.wait()

            # Let a signal-triggered shutdown finish before the loop closes
            if self._shutdown_task is not None:
                await self._shutdown_task

        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            await self.shutdown()
            sys.exit(1)


async def main() -> None:
    """Run the main entry point."""
    load_dotenv()

    app = HeaterControllerApp()
    await app.run()


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
