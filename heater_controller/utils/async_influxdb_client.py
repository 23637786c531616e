"""Async InfluxDB client with buffered, periodically flushed writes."""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from influxdb_client import Point, WritePrecision
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync

from heater_controller.config.settings import Settings


class AsyncInfluxDBClient:
    """Buffers points in memory and writes them in batches with retry."""

    def __init__(self, settings: Settings) -> None:
        """Initialize the async InfluxDB client."""
        self.settings = settings
        self.config = settings.influxdb
        self.logger = logging.getLogger(f"{__name__}.AsyncInfluxDB")

        self.client: Optional[InfluxDBClientAsync] = None

        # Write buffer for batching
        self.write_buffer: Deque[Point] = deque()
        self.buffer_lock = asyncio.Lock()

        self._flush_task: Optional[asyncio.Task[None]] = None
        self._running = False

        # Metrics
        self.writes_queued = 0
        self.writes_completed = 0
        self.write_errors = 0

    async def start(self) -> None:
        """Open the client and start the flush loop."""
        self.client = InfluxDBClientAsync(
            url=self.config.url,
            token=self.config.token,
            org=self.config.org,
        )
        self._running = True
        self._flush_task = asyncio.create_task(self._flush_loop())
        self.logger.info(f"Async InfluxDB client started for {self.config.url}")

    async def stop(self) -> None:
        """Flush remaining points and close the client."""
        if not self._running:
            return
        self._running = False

        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass

        await self._flush_buffer()

        if self.client:
            await self.client.close()
            self.client = None

        self.logger.info(
            f"Async InfluxDB client stopped. "
            f"Writes: queued={self.writes_queued}, "
            f"completed={self.writes_completed}, errors={self.write_errors}"
        )

    async def write_point(
        self,
        measurement: str,
        fields: Dict[str, Any],
        tags: Optional[Dict[str, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Queue a point for writing to the configured bucket."""
        point = Point(measurement)

        for key, value in (tags or {}).items():
            point = point.tag(key, value)

        for key, value in fields.items():
            point = point.field(key, value)

        if timestamp:
            point = point.time(timestamp, WritePrecision.NS)

        async with self.buffer_lock:
            self.write_buffer.append(point)
            self.writes_queued += 1
            buffer_full = len(self.write_buffer) >= self.config.batch_size

        if buffer_full:
            await self._flush_buffer()

        self.logger.debug(f"Queued point for {measurement}, buffer size: {len(self.write_buffer)}")

    async def _flush_loop(self) -> None:
        """Periodically flush the write buffer."""
        while self._running:
            await asyncio.sleep(self.config.flush_interval)
            await self._flush_buffer()

    async def _flush_buffer(self) -> None:
        """Write everything buffered so far."""
        async with self.buffer_lock:
            points: List[Point] = list(self.write_buffer)
            self.write_buffer.clear()

        if points:
            await self._write_batch_with_retry(points)

    async def _write_batch_with_retry(self, points: List[Point], max_retries: int = 3) -> None:
        """Write a batch of points with exponential backoff."""
        bucket = self.config.bucket
        for attempt in range(max_retries):
            try:
                if self.client is None:
                    raise RuntimeError("InfluxDB client not started")
                await self.client.write_api().write(bucket=bucket, record=points)

                self.writes_completed += len(points)
                self.logger.debug(f"Wrote {len(points)} points to {bucket}")
                return

            except Exception as e:
                self.write_errors += 1
                if attempt < max_retries - 1:
                    wait_time = 2**attempt
                    self.logger.warning(
                        f"Failed to write batch to {bucket}, retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    self.logger.error(
                        f"Failed to write batch to {bucket} after {max_retries} attempts, "
                        f"dropping {len(points)} points: {e}"
                    )
