# src/oracle_consensus/aggregator.py
"""
Response Aggregator - threshold consensus over oracle status reports

Submission pipeline:
1. Range checks on the claimed index and the reported value
2. Admission control: the oracle must own the claimed index
3. Window lookup: an open request must exist at (index, subject, timestamp)
4. One report per oracle per request, whatever the value
5. Report recorded and announced
6. First value to reach the threshold closes the window and is finalized once

Threshold: 3 distinct oracles agreeing on the same value (configurable)
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from src.errors import FlightSuretyError, IndexMismatch, OutOfRange, RequestClosedOrUnknown
from src.events import EventBus, NotificationType
from .registry import OracleRegistry
from .requests import RequestKey, RequestState, RequestTracker, StatusRequest

logger = logging.getLogger("flightsurety.oracle.consensus")


@dataclass
class ConsensusConfig:
    """Configuration for the consensus engine"""
    response_threshold: int = 3                      # distinct oracles needed for one value
    allowed_values: Optional[FrozenSet[int]] = None  # None accepts any integer

    def __post_init__(self):
        if self.response_threshold < 1:
            raise ValueError("response_threshold must be at least 1")

    @classmethod
    def from_settings(cls, settings: Any, allowed_values: Optional[FrozenSet[int]] = None) -> "ConsensusConfig":
        return cls(
            response_threshold=settings.ORACLE_RESPONSE_THRESHOLD,
            allowed_values=allowed_values,
        )


@dataclass
class FinalizedStatus:
    """Outcome of a request that reached consensus"""
    key: RequestKey
    value: int
    oracles: List[str]
    total_responses: int
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def subject(self) -> str:
        return self.key.subject

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.key.to_dict(),
            "value": self.value,
            "oracles": self.oracles,
            "total_responses": self.total_responses,
            "duration_ms": self.duration_ms,
            "finalized_at": self.timestamp.isoformat(),
        }


@dataclass
class SubmissionResult:
    """What happened to one accepted oracle report"""
    key: RequestKey
    oracle: str
    value: int
    votes_for_value: int
    threshold: int
    finalized: Optional[FinalizedStatus] = None

    @property
    def is_finalizing(self) -> bool:
        """True when this submission closed the request"""
        return self.finalized is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.key.to_dict(),
            "oracle": self.oracle,
            "value": self.value,
            "votes_for_value": self.votes_for_value,
            "threshold": self.threshold,
            "finalized": self.is_finalizing,
        }


class ConsensusEngine:
    """
    Collects oracle reports and finalizes each request exactly once.

    The check-and-close step runs under the request's own lock, so concurrent
    submitters racing on the same key produce a single finalization. Events and
    callbacks fire after the lock is released.
    """

    def __init__(
        self,
        registry: OracleRegistry,
        tracker: RequestTracker,
        config: Optional[ConsensusConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.tracker = tracker
        self.config = config or ConsensusConfig()
        self.event_bus = event_bus

        self.finalized: List[FinalizedStatus] = []
        self._finalized_callbacks: List[Callable] = []
        self._rejections: Dict[str, int] = {}

        logger.info(
            f"ConsensusEngine created: threshold={self.config.response_threshold}, "
            f"index_bound={self.registry.index_generator.config.bound}"
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        oracle: str,
        claimed_index: int,
        subject: str,
        timestamp: int,
        value: int,
    ) -> SubmissionResult:
        """
        Submit one oracle report.

        Raises:
            OutOfRange: index outside [0, bound) or value not allowed
            NotRegistered: unknown oracle
            IndexMismatch: oracle does not own claimed_index
            RequestClosedOrUnknown: no open request at the derived key
            DuplicateSubmission: oracle already reported on this key
        """
        try:
            return await self._submit(oracle, claimed_index, subject, timestamp, value)
        except FlightSuretyError as e:
            name = type(e).__name__
            self._rejections[name] = self._rejections.get(name, 0) + 1
            logger.warning(f"Report from {oracle} rejected: {e}")
            raise

    async def _submit(
        self,
        oracle: str,
        claimed_index: int,
        subject: str,
        timestamp: int,
        value: int,
    ) -> SubmissionResult:
        self._check_ranges(claimed_index, value)

        record = self.registry.get(oracle)
        if not record.owns(claimed_index):
            raise IndexMismatch(oracle, claimed_index)

        key = self.tracker.key_for(claimed_index, subject, timestamp)
        request = self.tracker.get(key)
        if request is None:
            raise RequestClosedOrUnknown(key)

        threshold = self.config.response_threshold
        finalized: Optional[FinalizedStatus] = None
        votes = 0
        expired = False

        async with request.lock:
            expired = self.tracker.expire_if_due(request)
            if not expired:
                if not request.is_open:
                    raise RequestClosedOrUnknown(key)

                votes = request.add_response(oracle, value)
                if votes >= threshold:
                    finalized = self._close(request, value)

        if expired:
            await self.tracker.publish_expired(request)
            raise RequestClosedOrUnknown(key)

        logger.info(f"Report from {oracle} on {key}: value={value} ({votes}/{threshold})")
        if self.event_bus:
            await self.event_bus.publish(
                NotificationType.REPORT_RECEIVED,
                oracle=oracle,
                value=value,
                votes=votes,
                threshold=threshold,
                **key.to_dict(),
            )

        if finalized is not None:
            await self._announce(finalized)

        return SubmissionResult(
            key=key,
            oracle=oracle,
            value=value,
            votes_for_value=votes,
            threshold=threshold,
            finalized=finalized,
        )

    def _check_ranges(self, claimed_index: int, value: int):
        bound = self.registry.index_generator.config.bound
        if not 0 <= claimed_index < bound:
            raise OutOfRange("index", claimed_index, f"must be in [0, {bound})")

        allowed = self.config.allowed_values
        if allowed is not None and value not in allowed:
            raise OutOfRange("value", value, f"must be one of {sorted(allowed)}")

    def _close(self, request: StatusRequest, value: int) -> FinalizedStatus:
        """Close a request on consensus. Caller holds the request lock."""
        now = self.tracker.clock()
        request.close(RequestState.FINALIZED, now, value=value)

        duration_ms = (now - request.opened_at).total_seconds() * 1000
        result = FinalizedStatus(
            key=request.key,
            value=value,
            oracles=list(request.responses_by_value[value]),
            total_responses=len(request.contributors),
            duration_ms=duration_ms,
        )
        self.finalized.append(result)

        logger.info(
            f"Request {request.key} FINALIZED: value={value}, "
            f"oracles={result.oracles}, responses={result.total_responses}, "
            f"duration={duration_ms:.1f}ms"
        )
        return result

    # =========================================================================
    # Callbacks
    # =========================================================================

    def on_finalized(self, callback: Callable):
        """Register callback for finalized statuses"""
        self._finalized_callbacks.append(callback)

    async def _announce(self, result: FinalizedStatus):
        if self.event_bus:
            await self.event_bus.publish(
                NotificationType.STATUS_FINALIZED,
                subject=result.key.subject,
                timestamp=result.key.timestamp,
                index=result.key.index,
                value=result.value,
                oracles=result.oracles,
            )

        for callback in self._finalized_callbacks:
            try:
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Finalized callback error: {e}")

    # =========================================================================
    # Status
    # =========================================================================

    def finalized_for(self, subject: str, timestamp: int) -> List[FinalizedStatus]:
        return [f for f in self.finalized if f.key.subject == subject and f.key.timestamp == timestamp]

    def get_status(self) -> Dict[str, Any]:
        return {
            "threshold": self.config.response_threshold,
            "allowed_values": sorted(self.config.allowed_values) if self.config.allowed_values else None,
            "oracles": self.registry.to_dict(),
            "requests": self.tracker.to_dict(),
            "finalized": len(self.finalized),
            "last_finalized": self.finalized[-1].to_dict() if self.finalized else None,
            "rejections": dict(self._rejections),
            "timestamp": datetime.utcnow().isoformat(),
        }
