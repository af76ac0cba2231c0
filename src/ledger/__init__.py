"""
Ledger Module - airline, flight and insurance bookkeeping

The consensus core talks to the ledger only through the Ledger protocol.
"""

from .interface import SUBJECT_SEPARATOR, Ledger, check_name, flight_subject
from .memory import InMemoryLedger, LedgerConfig, AirlineRecord, FlightRecord, InsurancePolicy

__all__ = [
    "Ledger",
    "flight_subject",
    "check_name",
    "SUBJECT_SEPARATOR",
    "InMemoryLedger",
    "LedgerConfig",
    "AirlineRecord",
    "FlightRecord",
    "InsurancePolicy",
]
