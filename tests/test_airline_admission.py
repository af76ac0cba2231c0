# tests/test_airline_admission.py
"""
Airline Admission Tests

Tests:
1. Quorum table for both policies
2. Fast path while fewer than four airlines are registered
3. Multi-party voting once consensus is required
4. Voter eligibility and duplicate votes
5. Racing votes register the candidate exactly once
6. Stale vote sets are discarded after the TTL
"""

import asyncio

import pytest

from src.airline_admission import (
    AdmissionConfig,
    AdmissionQuorum,
    AdmissionState,
    AirlineAdmission,
    QuorumPolicy,
)
from src.errors import AlreadyRegistered, DuplicateVote, NotFunded, NotRegistered, OutOfRange
from src.events import NotificationType
from src.ledger import InMemoryLedger
from tests.conftest import AIRLINE_FUNDING


def seed_airlines(ledger: InMemoryLedger, count: int, funded: bool = True):
    for i in range(count):
        airline = f"airline-{i}"
        ledger.register_airline(airline)
        if funded:
            ledger.fund_airline(airline, AIRLINE_FUNDING)


@pytest.fixture
def admission(ledger, event_bus, clock):
    return AirlineAdmission(ledger, AdmissionConfig(vote_ttl_seconds=60), event_bus, clock)


# =============================================================================
# Test: Quorum
# =============================================================================

class TestAdmissionQuorum:
    """Required votes per electorate size"""

    @pytest.mark.parametrize("registered,required", [(1, 1), (3, 1), (4, 2), (5, 2), (6, 3), (9, 4)])
    def test_half_policy(self, registered, required):
        assert AdmissionQuorum().required_votes(registered) == required

    @pytest.mark.parametrize("registered,required", [(3, 1), (4, 3), (5, 3), (6, 4)])
    def test_majority_policy(self, registered, required):
        quorum = AdmissionQuorum(policy=QuorumPolicy.MAJORITY)
        assert quorum.required_votes(registered) == required

    def test_policy_accepts_plain_string(self):
        assert AdmissionQuorum(policy="majority").policy == QuorumPolicy.MAJORITY

    def test_fast_path_boundary(self):
        quorum = AdmissionQuorum(min_consensus_airlines=4)
        assert quorum.uses_fast_path(3)
        assert not quorum.uses_fast_path(4)


# =============================================================================
# Test: Voting
# =============================================================================

class TestVote:
    """Tests for AirlineAdmission.vote"""

    @pytest.mark.asyncio
    async def test_fast_path_admits_on_first_vote(self, admission, ledger, event_bus):
        seed_airlines(ledger, 1)

        result = await admission.vote("airline-1", "airline-0")

        assert result.admitted
        assert result.required == 1
        assert ledger.is_airline_registered("airline-1")
        assert admission.state_of("airline-1") == AdmissionState.ADMITTED
        assert event_bus.count(NotificationType.AIRLINE_ADMITTED) == 1

    @pytest.mark.asyncio
    async def test_admitted_candidate_rejected(self, admission, ledger):
        seed_airlines(ledger, 2)

        with pytest.raises(AlreadyRegistered):
            await admission.vote("airline-1", "airline-0")

        assert "airline-1" not in admission._votes
        assert admission.get_status()["pending"] == {}

    @pytest.mark.asyncio
    async def test_separator_in_candidate_rejected(self, admission, ledger):
        seed_airlines(ledger, 1)

        with pytest.raises(OutOfRange):
            await admission.vote("air:line", "airline-0")
        assert admission._votes == {}

    @pytest.mark.asyncio
    async def test_fifth_airline_needs_two_votes(self, admission, ledger, event_bus):
        seed_airlines(ledger, 4)

        first = await admission.vote("airline-4", "airline-0")
        assert not first.admitted
        assert first.votes == 1 and first.required == 2
        assert admission.state_of("airline-4") == AdmissionState.VOTING
        assert not ledger.is_airline_registered("airline-4")
        assert event_bus.count(NotificationType.ADMISSION_VOTE_RECORDED) == 1

        second = await admission.vote("airline-4", "airline-1")
        assert second.admitted
        assert ledger.is_airline_registered("airline-4")
        assert ledger.get_registered_airline_count() == 5
        assert admission.votes_for("airline-4") == []

    @pytest.mark.asyncio
    async def test_duplicate_vote(self, admission, ledger):
        seed_airlines(ledger, 4)
        await admission.vote("airline-4", "airline-0")

        with pytest.raises(DuplicateVote):
            await admission.vote("airline-4", "airline-0")

        assert admission.votes_for("airline-4") == ["airline-0"]

    @pytest.mark.asyncio
    async def test_majority_policy_needs_three_of_four(self, ledger, event_bus):
        admission = AirlineAdmission(ledger, AdmissionConfig(quorum_policy=QuorumPolicy.MAJORITY), event_bus)
        seed_airlines(ledger, 4)

        assert not (await admission.vote("airline-4", "airline-0")).admitted
        assert not (await admission.vote("airline-4", "airline-1")).admitted
        assert (await admission.vote("airline-4", "airline-2")).admitted

    @pytest.mark.asyncio
    async def test_unregistered_voter(self, admission, ledger):
        seed_airlines(ledger, 1)

        with pytest.raises(NotRegistered):
            await admission.vote("airline-9", "stranger")

    @pytest.mark.asyncio
    async def test_unfunded_voter(self, admission, ledger):
        seed_airlines(ledger, 1, funded=False)

        with pytest.raises(NotFunded):
            await admission.vote("airline-1", "airline-0")

        assert not ledger.is_airline_registered("airline-1")


# =============================================================================
# Test: Concurrency and Expiry
# =============================================================================

class TestVoteRace:
    """Racing votes for the same candidate"""

    @pytest.mark.asyncio
    async def test_candidate_registered_once(self, admission, ledger, event_bus):
        seed_airlines(ledger, 4)

        async def yield_control(notification):
            await asyncio.sleep(0)

        event_bus.subscribe(yield_control)

        results = await asyncio.gather(
            *(admission.vote("airline-4", f"airline-{i}") for i in range(4)),
            return_exceptions=True,
        )

        admitted = [r for r in results if not isinstance(r, Exception) and r.admitted]
        assert len(admitted) == 1
        assert admission.admitted == ["airline-4"]
        assert all(isinstance(r, AlreadyRegistered) for r in results if isinstance(r, Exception))
        assert event_bus.count(NotificationType.AIRLINE_ADMITTED) == 1


class TestStaleVotes:
    """Vote TTL"""

    @pytest.mark.asyncio
    async def test_sweep_discards_old_votes(self, admission, ledger, clock):
        seed_airlines(ledger, 4)
        await admission.vote("airline-4", "airline-0")

        clock.advance(61)
        discarded = await admission.sweep_stale_votes()

        assert discarded == ["airline-4"]
        assert admission.state_of("airline-4") == AdmissionState.NO_VOTES

        # A fresh vote starts a new tally
        result = await admission.vote("airline-4", "airline-0")
        assert result.votes == 1 and not result.admitted

    @pytest.mark.asyncio
    async def test_recent_votes_survive(self, admission, ledger, clock):
        seed_airlines(ledger, 4)
        await admission.vote("airline-4", "airline-0")

        clock.advance(30)
        assert await admission.sweep_stale_votes() == []
        assert admission.votes_for("airline-4") == ["airline-0"]

    @pytest.mark.asyncio
    async def test_no_ttl_keeps_votes(self, ledger):
        admission = AirlineAdmission(ledger)
        seed_airlines(ledger, 4)
        await admission.vote("airline-4", "airline-0")

        assert await admission.sweep_stale_votes() == []
