# src/flight_surety.py
"""
FlightSurety Service - composition root

Wires the oracle consensus core, airline admission and the ledger together.
Neither the core nor the ledger knows about the other; this service passes
finalized statuses to the ledger and hands the ledger to admission voting.

Also owns the contract-level controls: the owner identity and the
operational (pause) flag.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.airline_admission import AdmissionConfig, AdmissionResult, AirlineAdmission
from src.errors import NotOperational, NotRegistered, Unauthorized
from src.events import EventBus, NotificationType
from src.ledger import InMemoryLedger, LedgerConfig, flight_subject
from src.oracle_consensus import (
    STATUS_CODES,
    ConsensusConfig,
    ConsensusEngine,
    EntropySource,
    FinalizedStatus,
    FlightStatus,
    IndexGenerator,
    IndexGeneratorConfig,
    OracleRegistry,
    RequestTracker,
    SubmissionResult,
    entropy_source_from_settings,
)

logger = logging.getLogger("flightsurety.service")


class FlightSuretyService:
    """Public operations of the insurance scheme"""

    def __init__(
        self,
        owner: str,
        first_airline: str,
        ledger: Optional[InMemoryLedger] = None,
        index_generator: Optional[IndexGenerator] = None,
        registration_fee: int = 10 ** 18,
        consensus_config: Optional[ConsensusConfig] = None,
        request_ttl_seconds: float = 0,
        admission_config: Optional[AdmissionConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.owner = owner
        self.event_bus = event_bus or EventBus()
        self.ledger = ledger or InMemoryLedger()
        self.index_generator = index_generator or IndexGenerator()
        self._operational = True

        self.registry = OracleRegistry(self.index_generator, registration_fee, self.event_bus)
        self.tracker = RequestTracker(
            self.index_generator,
            request_ttl_seconds=request_ttl_seconds,
            event_bus=self.event_bus,
        )
        self.engine = ConsensusEngine(
            self.registry,
            self.tracker,
            config=consensus_config or ConsensusConfig(allowed_values=STATUS_CODES),
            event_bus=self.event_bus,
        )
        self.admission = AirlineAdmission(self.ledger, admission_config, self.event_bus)

        # The first airline is registered on deployment
        if not self.ledger.is_airline_registered(first_airline):
            self.ledger.register_airline(first_airline)
        self.first_airline = first_airline

        logger.info(f"FlightSuretyService created: owner={owner}, first_airline={first_airline}")

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        event_bus: Optional[EventBus] = None,
        entropy_source: Optional[EntropySource] = None,
    ) -> "FlightSuretyService":
        generator = IndexGenerator(
            IndexGeneratorConfig.from_settings(settings),
            entropy_source or entropy_source_from_settings(settings),
        )
        return cls(
            owner=settings.OWNER_ADDRESS,
            first_airline=settings.FIRST_AIRLINE,
            ledger=InMemoryLedger(LedgerConfig.from_settings(settings)),
            index_generator=generator,
            registration_fee=settings.ORACLE_REGISTRATION_FEE_WEI,
            consensus_config=ConsensusConfig.from_settings(settings, allowed_values=STATUS_CODES),
            request_ttl_seconds=settings.REQUEST_TTL_SECONDS,
            admission_config=AdmissionConfig.from_settings(settings),
            event_bus=event_bus or EventBus(history_size=settings.EVENT_HISTORY_SIZE),
        )

    # =========================================================================
    # Contract Controls
    # =========================================================================

    @property
    def is_operational(self) -> bool:
        return self._operational

    def require_operational(self):
        if not self._operational:
            raise NotOperational()

    def require_owner(self, caller: str, operation: str):
        if caller != self.owner:
            raise Unauthorized(caller, operation)

    def set_operational(self, caller: str, operational: bool):
        self.require_owner(caller, "set operating status")
        self._operational = operational
        logger.info(f"Operating status set to {operational} by {caller}")

    # =========================================================================
    # Airlines
    # =========================================================================

    async def vote_airline(self, candidate: str, voter: str) -> AdmissionResult:
        self.require_operational()
        return await self.admission.vote(candidate, voter)

    def fund_airline(self, airline: str, amount: int) -> int:
        self.require_operational()
        return self.ledger.fund_airline(airline, amount)

    def register_flight(self, airline: str, flight: str, timestamp: int) -> str:
        self.require_operational()
        return self.ledger.register_flight(airline, flight, timestamp)

    # =========================================================================
    # Passengers
    # =========================================================================

    def buy_insurance(self, passenger: str, airline: str, flight: str, timestamp: int, amount: int) -> int:
        self.require_operational()
        return self.ledger.buy_insurance(passenger, flight_subject(airline, flight), timestamp, amount)

    def get_credit(self, passenger: str) -> int:
        return self.ledger.get_credit(passenger)

    def withdraw(self, passenger: str) -> int:
        self.require_operational()
        return self.ledger.withdraw(passenger)

    # =========================================================================
    # Oracles
    # =========================================================================

    async def register_oracle(self, identity: str, fee: int) -> List[int]:
        self.require_operational()
        return await self.registry.register(identity, fee)

    def get_oracle_indexes(self, identity: str) -> List[int]:
        return self.registry.lookup(identity)

    async def fetch_flight_status(self, airline: str, flight: str, timestamp: int, requester: str) -> int:
        """Open a status request for a registered flight; returns the assigned index"""
        self.require_operational()
        subject = flight_subject(airline, flight)
        if not self.ledger.is_flight_registered(subject, timestamp):
            raise NotRegistered("Flight", f"{subject}@{timestamp}")
        return await self.tracker.open_request(subject, timestamp, requester)

    async def submit_oracle_response(
        self,
        oracle: str,
        index: int,
        airline: str,
        flight: str,
        timestamp: int,
        status: int,
    ) -> SubmissionResult:
        self.require_operational()
        result = await self.engine.submit(oracle, index, flight_subject(airline, flight), timestamp, status)
        if result.finalized is not None:
            await self.process_flight_status(result.finalized)
        return result

    async def process_flight_status(self, finalized: FinalizedStatus) -> Dict[str, int]:
        """
        Apply a finalized status to the ledger.

        Runs once per finalized request. Only LATE_AIRLINE credits insurees;
        returns passenger -> amount credited.
        """
        subject, timestamp = finalized.key.subject, finalized.key.timestamp
        self.ledger.record_flight_status(subject, timestamp, finalized.value)

        credited: Dict[str, int] = {}
        if finalized.value != FlightStatus.LATE_AIRLINE:
            return credited

        for passenger in self.ledger.get_insurees(subject, timestamp):
            amount = self.ledger.credit_insuree(passenger, subject, timestamp)
            if amount:
                credited[passenger] = amount
                await self.event_bus.publish(
                    NotificationType.INSUREE_CREDITED,
                    passenger=passenger,
                    subject=subject,
                    timestamp=timestamp,
                    amount=amount,
                )

        logger.info(f"Flight {subject}@{timestamp} late (airline): credited {len(credited)} passenger(s)")
        return credited

    # =========================================================================
    # Administration
    # =========================================================================

    async def cancel_request(self, caller: str, index: int, airline: str, flight: str, timestamp: int):
        self.require_owner(caller, "cancel status requests")
        key = self.tracker.key_for(index, flight_subject(airline, flight), timestamp)
        return await self.tracker.cancel(key, reason=f"cancelled by {caller}")

    async def sweep(self, caller: str) -> Dict[str, Any]:
        """Expire stale status requests and admission votes"""
        self.require_owner(caller, "sweep expired records")
        expired = await self.tracker.sweep_expired()
        stale = await self.admission.sweep_stale_votes()
        return {
            "expired_requests": [k.to_dict() for k in expired],
            "discarded_candidacies": stale,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "operational": self._operational,
            "owner": self.owner,
            "consensus": self.engine.get_status(),
            "admission": self.admission.get_status(),
            "ledger": self.ledger.to_dict(),
            "events_published": self.event_bus.published_total,
            "timestamp": datetime.utcnow().isoformat(),
        }
