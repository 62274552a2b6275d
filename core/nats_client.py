"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between service instances.

This module wraps the nats-py client and its JetStream context.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from nats.aio.client import Client as NATS
from nats.errors import Error as NatsError
from nats.js import JetStreamContext
from nats.js.api import DeliverPolicy

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class EventType(Enum):
    """Event types handled by the benefit engine"""

    # Benefit Events
    BENEFIT_CREATED = "benefit.created"
    BENEFIT_UPDATED = "benefit.updated"
    BENEFIT_REDEEMED = "benefit.redeemed"
    BENEFIT_EXHAUSTED = "benefit.exhausted"
    BENEFIT_EXPIRED = "benefit.expired"

    # Profile Events (published by the member/business/association owners)
    MEMBER_UPDATED = "member.updated"
    BUSINESS_UPDATED = "business.updated"
    ASSOCIATION_UPDATED = "association.updated"


class ServiceSource(Enum):
    """Service sources"""

    BENEFIT_SERVICE = "benefit_service"
    MEMBER_SERVICE = "member_service"
    BUSINESS_SERVICE = "business_service"
    ASSOCIATION_SERVICE = "association_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Union[EventType, str],
        source: Union[ServiceSource, str],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, Enum) else event_type
        self.source = source.value if isinstance(source, Enum) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


EventHandler = Callable[[Event], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are keyed by the event type prefix (benefit.* -> benefit-stream).
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as the connection name)
            config: Optional InfraConfig (loaded from env if not provided)
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self.servers = self.config.nats_servers

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, Any] = {}  # pattern -> subscription
        self._streams: set = set()

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open the JetStream context"""
        try:
            self._nc = NATS()
            await self._nc.connect(servers=[self.servers], name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except (NatsError, OSError) as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, prefix: str) -> str:
        stream_name = f"{prefix}-stream"
        if stream_name in self._streams:
            return stream_name
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"], max_msgs=100000)
        except NatsError as e:
            # Existing stream with a different config is fine
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The stream is determined by the event type prefix (benefit.* -> benefit-stream).
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            stream_name = await self._ensure_stream(subject.split(".")[0])

            ack = await self._js.publish(subject, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except (NatsError, OSError) as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self,
        pattern: str,
        handler: EventHandler,
        durable: Optional[str] = None,
        new_only: bool = False,
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a JetStream push consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "benefit.*")
            handler: Async callback receiving an Event
            durable: Optional durable name for the consumer. Without one each
                call gets its own ephemeral consumer, so every instance sees
                every message.
            new_only: Skip messages stored before the subscription
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        async def _on_message(msg):
            try:
                payload = json.loads(msg.data.decode())
                if "type" in payload and "data" in payload:
                    event = Event.from_dict(payload)
                else:
                    event = Event(event_type=msg.subject, source="unknown", data=payload)
                await handler(event)
            except Exception as e:
                # A poison message must not kill the subscription
                logger.error(f"Error processing message on {msg.subject}: {e}")

        try:
            await self._ensure_stream(pattern.split(".")[0])
            subscription = await self._js.subscribe(
                pattern.replace("*", ">"),
                durable=durable,
                cb=_on_message,
                deliver_policy=DeliverPolicy.NEW if new_only else None,
            )
            self._subscriptions[pattern] = subscription
            logger.info(f"Subscribed to {pattern} (JetStream consumer)")
            return durable or pattern

        except (NatsError, OSError) as e:
            logger.error(f"Error subscribing to events: {e}")
            return None

    async def unsubscribe(self, pattern: str) -> bool:
        """Unsubscribe from a pattern"""
        subscription = self._subscriptions.pop(pattern, None)
        if subscription is None:
            return False
        await subscription.unsubscribe()
        logger.info(f"Unsubscribed from {pattern}")
        return True

    async def close(self):
        """Drain subscriptions and close the connection"""
        for pattern in list(self._subscriptions.keys()):
            try:
                await self.unsubscribe(pattern)
            except NatsError as e:
                logger.warning(f"Failed to unsubscribe {pattern}: {e}")

        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def subscribed_patterns(self) -> List[str]:
        return list(self._subscriptions.keys())

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected and self._js is not None


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional InfraConfig override

    Returns:
        Connected NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus


def create_event(
    event_type: EventType,
    data: Dict[str, Any],
    source: ServiceSource = ServiceSource.BENEFIT_SERVICE,
    subject: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Event:
    """Create an Event instance"""
    return Event(
        event_type=event_type,
        source=source,
        data=data,
        subject=subject,
        metadata=metadata,
    )
