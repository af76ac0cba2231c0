"""
Airline Admission Module - voting state machine for new airlines
"""

from .voting import (
    AirlineAdmission,
    AdmissionConfig,
    AdmissionQuorum,
    AdmissionResult,
    AdmissionState,
    AdmissionVote,
    QuorumPolicy,
)

__all__ = [
    "AirlineAdmission",
    "AdmissionConfig",
    "AdmissionQuorum",
    "AdmissionResult",
    "AdmissionState",
    "AdmissionVote",
    "QuorumPolicy",
]
