"""Async MQTT client with connection management, publish queue and retries."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from asyncio_mqtt import Client, MqttError

from heater_controller.config.settings import Settings

MessageCallback = Callable[[str, str], Awaitable[None]]


class AsyncMQTTClient:
    """Async MQTT client shared by all modules.

    Incoming messages are dispatched to per-topic coroutine callbacks;
    outgoing messages go through a queue so callers never block on the broker.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize the async MQTT client."""
        self.settings = settings
        self.logger = logging.getLogger(f"{__name__}.AsyncMQTT")

        # Connection state
        self.client: Optional[Client] = None
        self.connection_lock = asyncio.Lock()
        self._connected = False
        self._running = False

        # Subscribers keyed by exact topic
        self.subscribers: Dict[str, Set[MessageCallback]] = {}
        self.subscribers_lock = asyncio.Lock()

        # (topic, payload, retain)
        self.publish_queue: asyncio.Queue[Tuple[str, Any, bool]] = asyncio.Queue()

        # Background tasks
        self._read_task: Optional[asyncio.Task[None]] = None
        self._publish_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None

        # Metrics
        self.messages_published = 0
        self.messages_received = 0
        self.reconnect_attempts = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the MQTT broker and start the background tasks."""
        async with self.connection_lock:
            if self._connected:
                return

            self._running = True
            await self._connect_with_retry()

            self._read_task = asyncio.create_task(self._read_messages())
            self._publish_task = asyncio.create_task(self._publish_loop())
            self._reconnect_task = asyncio.create_task(self._monitor_connection())

    async def _connect_with_retry(self, max_retries: int = 5) -> None:
        """Connect to MQTT broker with exponential backoff."""
        mqtt = self.settings.mqtt
        for attempt in range(max_retries):
            try:
                self.client = Client(
                    hostname=mqtt.broker,
                    port=mqtt.port,
                    username=mqtt.username,
                    password=mqtt.password,
                    client_id=mqtt.client_id,
                    keepalive=30,
                )
                await self.client.connect()
                self._connected = True

                # Restore subscriptions after a reconnect
                async with self.subscribers_lock:
                    for topic in self.subscribers:
                        await self.client.subscribe(topic)

                self.logger.info(f"Connected to MQTT broker at {mqtt.broker}:{mqtt.port}")
                return

            except MqttError as e:
                self.reconnect_attempts += 1
                if attempt < max_retries - 1:
                    wait_time = min(2**attempt, 30)
                    self.logger.warning(
                        f"Failed to connect to MQTT broker, retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    self.logger.error(
                        f"Failed to connect to MQTT broker after {max_retries} attempts: {e}"
                    )
                    raise

    async def disconnect(self) -> None:
        """Stop background tasks and disconnect from the broker."""
        if not self._running:
            return
        self._running = False

        for task in (self._read_task, self._publish_task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                try:
                    await asyncio.wait_for(task, timeout=1.0)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    pass

        async with self.connection_lock:
            if self.client and self._connected:
                try:
                    await self.client.disconnect()
                except MqttError as e:
                    self.logger.warning(f"Error while disconnecting: {e}")
                self._connected = False

        self._read_task = None
        self._publish_task = None
        self._reconnect_task = None

        self.logger.info(
            f"Disconnected from MQTT broker. "
            f"Messages: published={self.messages_published}, "
            f"received={self.messages_received}, "
            f"reconnects={self.reconnect_attempts}"
        )

    async def publish(self, topic: str, payload: Any, retain: bool = False) -> None:
        """Queue a message for publishing."""
        await self.publish_queue.put((topic, payload, retain))

    async def _publish_loop(self) -> None:
        """Background task draining the publish queue."""
        while self._running:
            try:
                topic, payload, retain = await asyncio.wait_for(
                    self.publish_queue.get(), timeout=1.0
                )
            except asyncio.TimeoutError:
                continue

            try:
                if not self._connected:
                    # Keep the message until the connection is back
                    await self.publish_queue.put((topic, payload, retain))
                    await asyncio.sleep(0.1)
                    continue

                await self._publish_with_retry(topic, payload, retain)
            except Exception as e:
                self.logger.error(f"Error in publish loop: {e}", exc_info=True)

    async def _publish_with_retry(
        self, topic: str, payload: Any, retain: bool, max_retries: int = 3
    ) -> None:
        """Publish a message, retrying on broker errors."""
        for attempt in range(max_retries):
            try:
                async with self.connection_lock:
                    if self.client and self._connected:
                        await self.client.publish(topic, payload, retain=retain)

                self.messages_published += 1
                self.logger.debug(f"Published to {topic}: {payload}")
                return

            except Exception as e:
                if attempt < max_retries - 1:
                    self.logger.warning(f"Failed to publish to {topic}, retrying: {e}")
                    await asyncio.sleep(0.5)
                else:
                    self.logger.error(
                        f"Failed to publish to {topic} after {max_retries} attempts: {e}"
                    )

    async def subscribe(self, topic: str, callback: MessageCallback) -> None:
        """Register a coroutine callback for a topic."""
        async with self.subscribers_lock:
            if topic not in self.subscribers:
                self.subscribers[topic] = set()
                if self.client and self._connected:
                    await self.client.subscribe(topic)
                    self.logger.info(f"Subscribed to topic: {topic}")

            self.subscribers[topic].add(callback)

    async def unsubscribe(self, topic: str, callback: Optional[MessageCallback] = None) -> None:
        """Remove one callback, or all callbacks, for a topic."""
        async with self.subscribers_lock:
            if topic not in self.subscribers:
                return

            if callback:
                self.subscribers[topic].discard(callback)
                if not self.subscribers[topic]:
                    del self.subscribers[topic]
            else:
                del self.subscribers[topic]

            if topic not in self.subscribers and self.client and self._connected:
                await self.client.unsubscribe(topic)
                self.logger.info(f"Unsubscribed from topic: {topic}")

    async def _read_messages(self) -> None:
        """Read messages and hand them to subscribers."""
        while self._running:
            try:
                if not self.client or not self._connected:
                    await asyncio.sleep(1)
                    continue

                async with self.client.messages() as messages:
                    async for message in messages:
                        self.messages_received += 1
                        try:
                            await self._handle_message(message)
                        except Exception as e:
                            self.logger.error(
                                f"Error handling message on {message.topic}: {e}", exc_info=True
                            )

            except MqttError as e:
                self.logger.error(f"MQTT read error: {e}")
                self._connected = False
                await asyncio.sleep(1)
            except Exception as e:
                self.logger.error(f"Unexpected error in read loop: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, message: Any) -> None:
        """Decode a message and run its callbacks."""
        topic = str(message.topic)
        payload = (
            message.payload.decode("utf-8", errors="replace")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )

        async with self.subscribers_lock:
            callbacks = list(self.subscribers.get(topic, []))

        if not callbacks:
            return

        results = await asyncio.gather(
            *(callback(topic, payload) for callback in callbacks), return_exceptions=True
        )
        for callback, result in zip(callbacks, results):
            if isinstance(result, Exception):
                self.logger.error(
                    f"Error in callback {callback} for {topic}: {result}", exc_info=result
                )

    async def _monitor_connection(self) -> None:
        """Reconnect when the read loop reports a lost connection."""
        while self._running:
            await asyncio.sleep(30)

            if not self._connected:
                self.logger.info("Connection lost, attempting to reconnect...")
                try:
                    async with self.connection_lock:
                        await self._connect_with_retry()
                except MqttError as e:
                    self.logger.error(f"Reconnect failed: {e}")
                except Exception as e:
                    self.logger.error(f"Error in connection monitor: {e}", exc_info=True)
