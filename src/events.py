# src/events.py
"""
Notification bus for FlightSurety.

Every observable side effect (request opened, report received, status
finalized, admission vote recorded, airline admitted, ...) is published here.
Oracle simulators, the WebSocket stream, the Redis fan-out and the audit log
all subscribe to the same bus.
"""

import inspect
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger("flightsurety.events")


class NotificationType(str, Enum):
    """Observable event kinds"""
    ORACLE_REGISTERED = "oracle_registered"
    REQUEST_OPENED = "request_opened"
    REPORT_RECEIVED = "report_received"
    STATUS_FINALIZED = "status_finalized"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_EXPIRED = "request_expired"
    ADMISSION_VOTE_RECORDED = "admission_vote_recorded"
    AIRLINE_ADMITTED = "airline_admitted"
    INSUREE_CREDITED = "insuree_credited"


@dataclass
class Notification:
    """A single published event"""
    type: NotificationType
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def subject(self) -> Optional[str]:
        """Primary identity the event is about, used for audit indexing"""
        for key in ("subject", "candidate", "oracle", "passenger"):
            if key in self.payload:
                return str(self.payload[key])
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class _Subscription:
    callback: Callable
    types: Optional[Set[NotificationType]] = None

    def wants(self, notification: Notification) -> bool:
        return self.types is None or notification.type in self.types


class EventBus:
    """
    In-process publish/subscribe hub.

    Subscribers may be plain functions or coroutine functions. A failing
    subscriber is logged and skipped; it never affects the publisher or the
    remaining subscribers.
    """

    def __init__(self, history_size: int = 1000):
        self._subscriptions: List[_Subscription] = []
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._published = 0

    def subscribe(self, callback: Callable, types: Optional[Set[NotificationType]] = None) -> Callable:
        """Register a callback, optionally filtered to some notification types"""
        self._subscriptions.append(_Subscription(callback=callback, types=types))
        return callback

    def unsubscribe(self, callback: Callable):
        self._subscriptions = [s for s in self._subscriptions if s.callback != callback]

    async def publish(self, type: NotificationType, **payload: Any) -> Notification:
        """Build, record and deliver a notification"""
        notification = Notification(type=type, payload=payload)
        self._history.append(notification)
        self._published += 1
        logger.debug(f"Publishing {type.value}: {payload}")

        for subscription in list(self._subscriptions):
            if not subscription.wants(notification):
                continue
            try:
                result = subscription.callback(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber error on {type.value}: {e}")

        return notification

    def history(self, type: Optional[NotificationType] = None, limit: Optional[int] = None) -> List[Notification]:
        """Recent notifications, oldest first"""
        items = [n for n in self._history if type is None or n.type == type]
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def count(self, type: NotificationType) -> int:
        return sum(1 for n in self._history if n.type == type)

    @property
    def published_total(self) -> int:
        return self._published


class RedisEventPublisher:
    """
    Bus subscriber that fans notifications out to a Redis pub/sub channel.

    Args:
        client: a redis.asyncio.Redis client
        channel: channel name to publish JSON payloads on
    """

    def __init__(self, client: Any, channel: str):
        self.client = client
        self.channel = channel
        self.failures = 0

    async def __call__(self, notification: Notification):
        try:
            await self.client.publish(self.channel, notification.to_json())
        except Exception as e:
            # fan-out is best effort, the audit log keeps the record
            self.failures += 1
            logger.warning(f"Redis publish failed for {notification.event_id}: {e}")

    async def close(self):
        await self.client.aclose()
