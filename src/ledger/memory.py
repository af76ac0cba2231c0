# src/ledger/memory.py
"""
In-memory flight ledger: airlines, funding, flights, insurance and credits.

Plain keyed bookkeeping with no consensus logic of its own. Amounts are
integers in wei.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.errors import AlreadyRegistered, InsufficientFee, NotFunded, NotRegistered, OutOfRange
from .interface import check_name, flight_subject

logger = logging.getLogger("flightsurety.ledger")

FlightKey = Tuple[str, int]


@dataclass
class LedgerConfig:
    """Funding and insurance limits"""
    airline_funding: int = 10 * 10 ** 18    # wei an airline must fund before acting
    insurance_cap: int = 10 ** 18            # max premium per passenger per flight
    payout_numerator: int = 3                # payout = premium * 3 / 2
    payout_denominator: int = 2

    @classmethod
    def from_settings(cls, settings: Any) -> "LedgerConfig":
        return cls(
            airline_funding=settings.AIRLINE_FUNDING_WEI,
            insurance_cap=settings.INSURANCE_CAP_WEI,
        )


@dataclass
class AirlineRecord:
    airline: str
    funded_amount: int = 0
    registered_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class FlightRecord:
    airline: str
    flight: str
    timestamp: int
    status: int = 0
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def subject(self) -> str:
        return flight_subject(self.airline, self.flight)


@dataclass
class InsurancePolicy:
    passenger: str
    subject: str
    timestamp: int
    premium: int
    credited: bool = False


class InMemoryLedger:
    """Reference ledger implementation backing the service and tests"""

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig()
        self._airlines: Dict[str, AirlineRecord] = {}
        self._flights: Dict[FlightKey, FlightRecord] = {}
        self._policies: Dict[FlightKey, Dict[str, InsurancePolicy]] = {}
        self._credits: Dict[str, int] = {}
        self._balance = 0

    # =========================================================================
    # Airlines
    # =========================================================================

    def is_airline_registered(self, airline: str) -> bool:
        return airline in self._airlines

    def is_airline_funded(self, airline: str) -> bool:
        record = self._airlines.get(airline)
        return record is not None and record.funded_amount >= self.config.airline_funding

    def get_registered_airline_count(self) -> int:
        return len(self._airlines)

    def register_airline(self, airline: str):
        check_name("airline", airline)
        if airline in self._airlines:
            raise AlreadyRegistered("Airline", airline)
        self._airlines[airline] = AirlineRecord(airline=airline)
        logger.info(f"Airline {airline} registered ({len(self._airlines)} total)")

    def fund_airline(self, airline: str, amount: int) -> int:
        """Add funding; returns the airline's total funding"""
        record = self._airlines.get(airline)
        if record is None:
            raise NotRegistered("Airline", airline)
        if record.funded_amount + amount < self.config.airline_funding:
            raise InsufficientFee(amount, self.config.airline_funding - record.funded_amount)
        record.funded_amount += amount
        self._balance += amount
        logger.info(f"Airline {airline} funded with {amount} wei")
        return record.funded_amount

    def require_funded_airline(self, airline: str):
        if airline not in self._airlines:
            raise NotRegistered("Airline", airline)
        if not self.is_airline_funded(airline):
            raise NotFunded(airline)

    # =========================================================================
    # Flights
    # =========================================================================

    def register_flight(self, airline: str, flight: str, timestamp: int) -> str:
        """Register a flight for a funded airline; returns its subject identity"""
        self.require_funded_airline(airline)
        subject = flight_subject(airline, flight)
        key = (subject, timestamp)
        if key in self._flights:
            raise AlreadyRegistered("Flight", f"{subject}@{timestamp}")
        self._flights[key] = FlightRecord(airline=airline, flight=flight, timestamp=timestamp)
        logger.info(f"Flight {subject}@{timestamp} registered")
        return subject

    def is_flight_registered(self, subject: str, timestamp: int) -> bool:
        return (subject, timestamp) in self._flights

    def get_flight(self, subject: str, timestamp: int) -> FlightRecord:
        record = self._flights.get((subject, timestamp))
        if record is None:
            raise NotRegistered("Flight", f"{subject}@{timestamp}")
        return record

    def record_flight_status(self, subject: str, timestamp: int, status: int):
        record = self.get_flight(subject, timestamp)
        record.status = status
        record.updated_at = datetime.utcnow()

    # =========================================================================
    # Insurance
    # =========================================================================

    def buy_insurance(self, passenger: str, subject: str, timestamp: int, amount: int) -> int:
        """Buy or top up a policy; returns the passenger's total premium for the flight"""
        if not self.is_flight_registered(subject, timestamp):
            raise NotRegistered("Flight", f"{subject}@{timestamp}")
        if amount <= 0:
            raise OutOfRange("amount", amount, "premium must be positive")

        policies = self._policies.setdefault((subject, timestamp), {})
        policy = policies.get(passenger)
        current = policy.premium if policy else 0
        if current + amount > self.config.insurance_cap:
            raise OutOfRange(
                "amount", amount, f"total premium may not exceed {self.config.insurance_cap} wei"
            )

        if policy is None:
            policy = InsurancePolicy(passenger=passenger, subject=subject, timestamp=timestamp, premium=0)
            policies[passenger] = policy
        policy.premium += amount
        self._balance += amount
        logger.info(f"Passenger {passenger} insured {subject}@{timestamp} for {policy.premium} wei")
        return policy.premium

    def get_insurees(self, subject: str, timestamp: int) -> List[str]:
        return list(self._policies.get((subject, timestamp), {}))

    def credit_insuree(self, passenger: str, subject: str, timestamp: int) -> int:
        """Credit 1.5x the premium once per policy; returns the amount credited"""
        policy = self._policies.get((subject, timestamp), {}).get(passenger)
        if policy is None:
            raise NotRegistered("Policy", f"{passenger}@{subject}@{timestamp}")
        if policy.credited:
            return 0

        payout = policy.premium * self.config.payout_numerator // self.config.payout_denominator
        policy.credited = True
        self._credits[passenger] = self._credits.get(passenger, 0) + payout
        logger.info(f"Passenger {passenger} credited {payout} wei for {subject}@{timestamp}")
        return payout

    def get_credit(self, passenger: str) -> int:
        return self._credits.get(passenger, 0)

    def withdraw(self, passenger: str) -> int:
        """Pay out all accumulated credit"""
        amount = self._credits.get(passenger, 0)
        if amount <= 0:
            raise OutOfRange("credit", amount, "nothing to withdraw")
        if amount > self._balance:
            raise OutOfRange("credit", amount, "ledger balance too low")
        self._credits[passenger] = 0
        self._balance -= amount
        logger.info(f"Passenger {passenger} withdrew {amount} wei")
        return amount

    @property
    def balance(self) -> int:
        return self._balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "airlines": len(self._airlines),
            "funded_airlines": sum(1 for a in self._airlines if self.is_airline_funded(a)),
            "flights": len(self._flights),
            "policies": sum(len(p) for p in self._policies.values()),
            "balance": self._balance,
        }
