# src/airline_admission/voting.py
"""
Airline Admission - multi-party voting on new airlines

Per-candidate states:
- NO_VOTES: nobody has voted for the candidate yet
- VOTING: votes recorded, quorum not reached
- ADMITTED: candidate registered on the ledger (vote record cleared)

Policy switches on the number of registered airlines N:
- N < min_consensus_airlines: the first vote from a funded airline admits
- otherwise: admitted once distinct voters reach the quorum
  (N // 2 under the "half" policy, N // 2 + 1 under "majority")
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from src.errors import AlreadyRegistered, DuplicateVote, NotFunded, NotRegistered
from src.events import EventBus, NotificationType
from src.ledger import Ledger, check_name

logger = logging.getLogger("flightsurety.admission")


class AdmissionState(str, Enum):
    """Admission progress of one candidate"""
    NO_VOTES = "no_votes"
    VOTING = "voting"
    ADMITTED = "admitted"


class QuorumPolicy(str, Enum):
    """How many votes admit a candidate once consensus is required"""
    HALF = "half"            # N // 2, exactly half when N is even
    MAJORITY = "majority"    # N // 2 + 1, strict majority


@dataclass
class AdmissionQuorum:
    """
    Admission quorum for an electorate of N registered airlines.

    With the defaults, N=4 needs 2 votes, N=5 needs 2, N=6 needs 3.
    """

    min_consensus_airlines: int = 4
    policy: QuorumPolicy = QuorumPolicy.HALF

    def __post_init__(self):
        self.policy = QuorumPolicy(self.policy)
        if self.min_consensus_airlines < 1:
            raise ValueError("min_consensus_airlines must be at least 1")

    def uses_fast_path(self, registered_airlines: int) -> bool:
        """True while a single vote is enough"""
        return registered_airlines < self.min_consensus_airlines

    def required_votes(self, registered_airlines: int) -> int:
        if self.uses_fast_path(registered_airlines):
            return 1
        if self.policy == QuorumPolicy.MAJORITY:
            return registered_airlines // 2 + 1
        return registered_airlines // 2

    def has_quorum(self, votes: int, registered_airlines: int) -> bool:
        return votes >= self.required_votes(registered_airlines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_consensus_airlines": self.min_consensus_airlines,
            "policy": self.policy.value,
        }


@dataclass
class AdmissionConfig:
    """Configuration for airline admission"""
    min_consensus_airlines: int = 4
    quorum_policy: QuorumPolicy = QuorumPolicy.HALF
    vote_ttl_seconds: float = 0     # 0 keeps pending votes forever

    @classmethod
    def from_settings(cls, settings: Any) -> "AdmissionConfig":
        return cls(
            min_consensus_airlines=settings.MIN_CONSENSUS_AIRLINES,
            quorum_policy=QuorumPolicy(settings.ADMISSION_QUORUM_POLICY),
            vote_ttl_seconds=settings.ADMISSION_VOTE_TTL_SECONDS,
        )


@dataclass
class AdmissionVote:
    """Pending votes for one candidate"""
    candidate: str
    voters: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def state(self) -> AdmissionState:
        return AdmissionState.VOTING if self.voters else AdmissionState.NO_VOTES

    def add_vote(self, voter: str) -> int:
        """Record a vote. Returns the new tally."""
        if voter in self.voters:
            raise DuplicateVote(voter, self.candidate)
        self.voters.append(voter)
        return len(self.voters)

    def reset(self):
        self.voters.clear()


@dataclass
class AdmissionResult:
    """Outcome of one vote call"""
    candidate: str
    voter: str
    admitted: bool
    votes: int
    required: int
    registered_airlines: int

    @property
    def state(self) -> AdmissionState:
        return AdmissionState.ADMITTED if self.admitted else AdmissionState.VOTING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "voter": self.voter,
            "admitted": self.admitted,
            "state": self.state.value,
            "votes": self.votes,
            "required": self.required,
            "registered_airlines": self.registered_airlines,
        }


class AirlineAdmission:
    """
    Owns every AdmissionVote and drives candidates to ADMITTED.

    Each candidate's record has its own lock; the ledger's register_airline is
    called exactly once, on the transition into ADMITTED.
    """

    def __init__(
        self,
        ledger: Ledger,
        config: Optional[AdmissionConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.ledger = ledger
        self.config = config or AdmissionConfig()
        self.quorum = AdmissionQuorum(
            min_consensus_airlines=self.config.min_consensus_airlines,
            policy=self.config.quorum_policy,
        )
        self.event_bus = event_bus
        self.clock = clock

        self._votes: Dict[str, AdmissionVote] = {}
        self.admitted: List[str] = []

        logger.info(
            f"AirlineAdmission created: min_consensus={self.config.min_consensus_airlines}, "
            f"policy={self.quorum.policy.value}"
        )

    def _require_voter(self, voter: str):
        if not self.ledger.is_airline_registered(voter):
            raise NotRegistered("Airline", voter)
        if not self.ledger.is_airline_funded(voter):
            raise NotFunded(voter)

    async def vote(self, candidate: str, voter: str) -> AdmissionResult:
        """
        Cast (or, for the first voter, propose) a vote to admit candidate.

        Raises:
            NotRegistered: voter is not a registered airline
            NotFunded: voter has not funded its participation
            AlreadyRegistered: candidate is already admitted
            DuplicateVote: voter already voted for this candidate
        """
        self._require_voter(voter)
        check_name("candidate", candidate)
        if self.ledger.is_airline_registered(candidate):
            raise AlreadyRegistered("Airline", candidate)

        record = self._votes.get(candidate)
        if record is None:
            record = AdmissionVote(candidate=candidate, started_at=self.clock())
            self._votes[candidate] = record

        async with record.lock:
            if self.ledger.is_airline_registered(candidate):
                raise AlreadyRegistered("Airline", candidate)

            registered = self.ledger.get_registered_airline_count()
            required = self.quorum.required_votes(registered)

            if self.quorum.uses_fast_path(registered):
                votes = 1
                admitted = True
            else:
                votes = record.add_vote(voter)
                admitted = votes >= required

            if admitted:
                self.ledger.register_airline(candidate)
                self.admitted.append(candidate)
                record.reset()
                if self._votes.get(candidate) is record:
                    del self._votes[candidate]

        result = AdmissionResult(
            candidate=candidate,
            voter=voter,
            admitted=admitted,
            votes=votes,
            required=required,
            registered_airlines=registered,
        )

        if admitted:
            logger.info(f"Airline {candidate} ADMITTED: {votes}/{required} vote(s), N={registered}")
            await self._publish(NotificationType.AIRLINE_ADMITTED, result)
        else:
            logger.info(f"Vote from {voter} for {candidate}: {votes}/{required}")
            await self._publish(NotificationType.ADMISSION_VOTE_RECORDED, result)
        return result

    async def _publish(self, type: NotificationType, result: AdmissionResult):
        if self.event_bus:
            await self.event_bus.publish(
                type,
                candidate=result.candidate,
                voter=result.voter,
                votes=result.votes,
                required=result.required,
                registered_airlines=result.registered_airlines,
            )

    def state_of(self, candidate: str) -> AdmissionState:
        if self.ledger.is_airline_registered(candidate):
            return AdmissionState.ADMITTED
        record = self._votes.get(candidate)
        return record.state if record else AdmissionState.NO_VOTES

    def votes_for(self, candidate: str) -> List[str]:
        record = self._votes.get(candidate)
        return list(record.voters) if record else []

    async def sweep_stale_votes(self) -> List[str]:
        """Discard pending vote sets older than the TTL; returns the candidates"""
        if self.config.vote_ttl_seconds <= 0:
            return []

        cutoff = self.clock() - timedelta(seconds=self.config.vote_ttl_seconds)
        discarded: List[str] = []
        for candidate, record in list(self._votes.items()):
            async with record.lock:
                if record.voters and record.started_at <= cutoff:
                    record.reset()
                    if self._votes.get(candidate) is record:
                        del self._votes[candidate]
                    discarded.append(candidate)

        if discarded:
            logger.info(f"Discarded stale votes for {discarded}")
        return discarded

    def get_status(self) -> Dict[str, Any]:
        registered = self.ledger.get_registered_airline_count()
        return {
            "registered_airlines": registered,
            "quorum": self.quorum.to_dict(),
            "required_votes": self.quorum.required_votes(registered),
            "pending": {c: list(r.voters) for c, r in self._votes.items() if r.voters},
            "admitted": list(self.admitted),
        }
