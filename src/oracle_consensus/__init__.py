"""
Oracle Consensus Module - decentralized flight status agreement

Oracles register for a fee and receive three pseudo-random indexes. A status
request opens a window keyed by (index, subject, timestamp); oracles holding
that index report a status code, and the first code backed by the threshold
number of distinct oracles is finalized exactly once.
"""

from .entropy import (
    EntropySource,
    SystemEntropySource,
    SeededEntropySource,
    IndexGenerator,
    IndexGeneratorConfig,
    IndexDraw,
    entropy_source_from_settings,
)
from .registry import OracleRegistry, OracleRecord
from .requests import RequestTracker, RequestKey, RequestState, StatusRequest
from .aggregator import ConsensusEngine, ConsensusConfig, FinalizedStatus, SubmissionResult
from .status import FlightStatus, STATUS_CODES

__all__ = [
    # Index assignment
    "EntropySource",
    "SystemEntropySource",
    "SeededEntropySource",
    "IndexGenerator",
    "IndexGeneratorConfig",
    "IndexDraw",
    "entropy_source_from_settings",
    # Registry
    "OracleRegistry",
    "OracleRecord",
    # Request tracking
    "RequestTracker",
    "RequestKey",
    "RequestState",
    "StatusRequest",
    # Consensus
    "ConsensusEngine",
    "ConsensusConfig",
    "FinalizedStatus",
    "SubmissionResult",
    # Status codes
    "FlightStatus",
    "STATUS_CODES",
]
