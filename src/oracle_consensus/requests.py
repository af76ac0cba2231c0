# src/oracle_consensus/requests.py
"""
Request Tracker - response-collection windows for flight status requests

A window is keyed by (index, subject, timestamp). The key is derived, not
random, so the requester and every responding oracle agree on it without
coordination. Windows close on consensus, cancellation or expiry and are kept
afterwards so late submissions can be told apart from unknown keys.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

from src.errors import DuplicateSubmission, RequestClosedOrUnknown
from src.events import EventBus, NotificationType
from .entropy import IndexGenerator

logger = logging.getLogger("flightsurety.oracle.requests")


class RequestKey(NamedTuple):
    """Composite lookup key of one consensus round"""
    index: int
    subject: str
    timestamp: int

    def __str__(self) -> str:
        return f"{self.index}/{self.subject}/{self.timestamp}"

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "subject": self.subject, "timestamp": self.timestamp}


class RequestState(str, Enum):
    """Lifecycle of a status request"""
    OPEN = "open"              # Accepting oracle responses
    FINALIZED = "finalized"    # A value reached the threshold
    CANCELLED = "cancelled"    # Closed by an operator
    EXPIRED = "expired"        # TTL elapsed before consensus


@dataclass
class StatusRequest:
    """State of a single response-collection window"""
    key: RequestKey
    requester: str
    state: RequestState = RequestState.OPEN
    responses_by_value: Dict[int, List[str]] = field(default_factory=dict)
    contributors: Set[str] = field(default_factory=set)
    finalized_value: Optional[int] = None

    # Timing
    opened_at: datetime = field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # Guards every mutation of this record
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def is_open(self) -> bool:
        return self.state == RequestState.OPEN

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def accepts(self, now: datetime) -> bool:
        """Open and not past its expiry"""
        return self.is_open and not self.is_expired(now)

    def add_response(self, oracle: str, value: int) -> int:
        """
        Record one oracle's report.

        Returns:
            Number of distinct oracles now backing this value

        Raises:
            DuplicateSubmission: oracle already reported on this key, for any value
        """
        if oracle in self.contributors:
            raise DuplicateSubmission(oracle, self.key)
        self.contributors.add(oracle)
        self.responses_by_value.setdefault(value, []).append(oracle)
        return len(self.responses_by_value[value])

    def close(self, state: RequestState, now: datetime, value: Optional[int] = None):
        self.state = state
        self.closed_at = now
        if value is not None:
            self.finalized_value = value

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.key.to_dict(),
            "requester": self.requester,
            "state": self.state.value,
            "responses": {str(v): list(oracles) for v, oracles in self.responses_by_value.items()},
            "finalized_value": self.finalized_value,
            "opened_at": self.opened_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }


class RequestTracker:
    """
    Owns every StatusRequest.

    Each record carries its own lock so unrelated flights never serialize
    behind one another.
    """

    def __init__(
        self,
        index_generator: IndexGenerator,
        request_ttl_seconds: float = 0,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.index_generator = index_generator
        self.request_ttl_seconds = request_ttl_seconds
        self.event_bus = event_bus
        self.clock = clock
        self._requests: Dict[RequestKey, StatusRequest] = {}

    @staticmethod
    def key_for(index: int, subject: str, timestamp: int) -> RequestKey:
        return RequestKey(index=index, subject=subject, timestamp=timestamp)

    async def open_request(self, subject: str, timestamp: int, requester: str) -> int:
        """
        Open a window for (subject, timestamp) and return the assigned index.

        A stale record at the same key is replaced.
        """
        index = self.index_generator.next_index(requester)
        key = self.key_for(index, subject, timestamp)
        now = self.clock()

        expires_at = None
        if self.request_ttl_seconds > 0:
            expires_at = now + timedelta(seconds=self.request_ttl_seconds)

        previous = self._requests.get(key)
        if previous is not None and previous.is_open:
            logger.warning(f"Replacing open request at {key}")

        self._requests[key] = StatusRequest(
            key=key, requester=requester, opened_at=now, expires_at=expires_at
        )
        logger.info(f"Request opened: {key} by {requester}")

        if self.event_bus:
            await self.event_bus.publish(
                NotificationType.REQUEST_OPENED,
                index=index,
                subject=subject,
                timestamp=timestamp,
                requester=requester,
            )
        return index

    def get(self, key: RequestKey) -> Optional[StatusRequest]:
        return self._requests.get(key)

    def is_open(self, key: RequestKey) -> bool:
        request = self._requests.get(key)
        return request is not None and request.accepts(self.clock())

    def expire_if_due(self, request: StatusRequest) -> bool:
        """
        Mark an open request as expired when its TTL has elapsed.

        Must be called with the request's lock held. Returns True when the
        request was expired by this call.
        """
        now = self.clock()
        if request.is_open and request.is_expired(now):
            request.close(RequestState.EXPIRED, now)
            logger.info(f"Request expired: {request.key}")
            return True
        return False

    async def publish_expired(self, request: StatusRequest):
        if self.event_bus:
            await self.event_bus.publish(NotificationType.REQUEST_EXPIRED, **request.key.to_dict())

    async def cancel(self, key: RequestKey, reason: str = "cancelled") -> StatusRequest:
        """
        Close an open request without a result.

        Raises:
            RequestClosedOrUnknown: no open request at key
        """
        request = self._requests.get(key)
        if request is None:
            raise RequestClosedOrUnknown(key)

        async with request.lock:
            if not request.is_open:
                raise RequestClosedOrUnknown(key)
            request.close(RequestState.CANCELLED, self.clock())

        logger.info(f"Request cancelled: {key} ({reason})")
        if self.event_bus:
            await self.event_bus.publish(
                NotificationType.REQUEST_CANCELLED, reason=reason, **key.to_dict()
            )
        return request

    async def sweep_expired(self) -> List[RequestKey]:
        """Expire every open request past its TTL; returns the affected keys"""
        expired: List[RequestKey] = []
        for request in list(self._requests.values()):
            if not request.is_open:
                continue
            async with request.lock:
                if not self.expire_if_due(request):
                    continue
            expired.append(request.key)
            await self.publish_expired(request)

        if expired:
            logger.info(f"Swept {len(expired)} expired request(s)")
        return expired

    def open_requests(self) -> List[StatusRequest]:
        now = self.clock()
        return [r for r in self._requests.values() if r.accepts(now)]

    def to_dict(self) -> Dict[str, Any]:
        counts = {state.value: 0 for state in RequestState}
        for request in self._requests.values():
            counts[request.state.value] += 1
        return {
            "total_requests": len(self._requests),
            "by_state": counts,
            "request_ttl_seconds": self.request_ttl_seconds,
        }
