# src/ledger/interface.py
"""
Narrow ledger interface consumed by the consensus core and admission voting.

The core depends only on this protocol; a concrete ledger is wired in at
composition time.
"""

from typing import List, Protocol

from src.errors import OutOfRange

SUBJECT_SEPARATOR = ":"


def check_name(field_name: str, value: str) -> str:
    """Reject airline names and flight codes that would make subjects ambiguous"""
    if not value or SUBJECT_SEPARATOR in value:
        raise OutOfRange(field_name, value, f"must be non-empty and must not contain '{SUBJECT_SEPARATOR}'")
    return value


def flight_subject(airline: str, flight: str) -> str:
    """Subject identity of a flight, as used in status request keys"""
    check_name("airline", airline)
    check_name("flight", flight)
    return f"{airline}{SUBJECT_SEPARATOR}{flight}"


class Ledger(Protocol):
    def is_airline_registered(self, airline: str) -> bool: ...

    def is_airline_funded(self, airline: str) -> bool: ...

    def get_registered_airline_count(self) -> int: ...

    def register_airline(self, airline: str) -> None: ...

    def is_flight_registered(self, subject: str, timestamp: int) -> bool: ...

    def get_insurees(self, subject: str, timestamp: int) -> List[str]: ...

    def credit_insuree(self, passenger: str, subject: str, timestamp: int) -> int: ...

    def record_flight_status(self, subject: str, timestamp: int, status: int) -> None: ...
