"""
NATS JetStream Event Bus

Event-driven communication for Python microservices using the native
nats-py client.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import nats
from nats.js.errors import BadRequestError

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class NATSEventBus:
    """
    NATS JetStream event bus.

    Subjects are the dotted event types (e.g. "membership.plan.changed"); the
    first segment selects the stream ("membership" -> "membership-stream").
    """

    def __init__(self, service_name: str, config: Optional[InfraConfig] = None):
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self._nc = None
        self._js = None
        self._streams = set()

        logger.info(f"NATS EventBus initialized: {self.config.nats_server_url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(
                servers=[self.config.nats_server_url],
                name=self.service_name,
            )
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, subject: str) -> None:
        prefix = subject.split(".")[0]
        stream_name = f"{prefix}-stream"
        if stream_name in self._streams:
            return
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except BadRequestError as e:
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(stream_name)

    async def publish(self, subject: str, data: Dict[str, Any]) -> None:
        """
        Publish a JSON payload to JetStream.

        Raises:
            RuntimeError: Not connected
        """
        if not self.is_connected:
            raise RuntimeError("Not connected to NATS")

        await self._ensure_stream(subject)
        payload = json.dumps(data, cls=DecimalEncoder).encode()
        ack = await self._js.publish(subject, payload)
        logger.info(f"Published {subject} to stream {ack.stream}, seq={ack.seq}")

    async def close(self):
        """Drain and close the NATS connection"""
        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(service_name: str, config: Optional[InfraConfig] = None) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional infrastructure config

    Returns:
        Connected NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        _event_bus = NATSEventBus(service_name=service_name, config=config)
        await _event_bus.connect()

    return _event_bus
