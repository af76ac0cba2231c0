# src/oracle_consensus/status.py
"""Flight status codes reported by oracles"""

from enum import IntEnum
from typing import FrozenSet


class FlightStatus(IntEnum):
    UNKNOWN = 0
    ON_TIME = 10
    LATE_AIRLINE = 20     # only this one pays out
    LATE_WEATHER = 30
    LATE_TECHNICAL = 40
    LATE_OTHER = 50

    @property
    def pays_out(self) -> bool:
        return self is FlightStatus.LATE_AIRLINE


STATUS_CODES: FrozenSet[int] = frozenset(int(s) for s in FlightStatus)
