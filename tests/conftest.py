"""
pytest configuration for the FlightSurety test suite
"""

from datetime import datetime, timedelta
from typing import List

import pytest

from src.config import Settings, WEI_PER_ETHER
from src.events import EventBus
from src.ledger import InMemoryLedger
from src.oracle_consensus import (
    ConsensusConfig,
    ConsensusEngine,
    IndexGenerator,
    IndexGeneratorConfig,
    OracleRegistry,
    RequestTracker,
    SeededEntropySource,
    STATUS_CODES,
)
from src.flight_surety import FlightSuretyService

ORACLE_FEE = WEI_PER_ETHER
AIRLINE_FUNDING = 10 * WEI_PER_ETHER


class FixedIndexGenerator(IndexGenerator):
    """Every oracle owns the same indexes and every request lands on one index"""

    def __init__(self, oracle_indexes: List[int] = None, request_index: int = 0):
        super().__init__(IndexGeneratorConfig(), SeededEntropySource("fixed"))
        self.oracle_indexes = oracle_indexes or [0, 1, 2]
        self.request_index = request_index

    def generate_indexes(self, seed_identity: str) -> List[int]:
        return list(self.oracle_indexes)

    def next_index(self, seed_identity: str) -> int:
        return self.request_index


class FakeClock:
    """Manually advanced clock for expiry tests"""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    """Settings instance with per-test overrides"""
    settings = Settings()
    settings.ENVIRONMENT = "testing"
    settings.EVENT_LOG_ENABLED = False
    settings.EVENTS_REDIS_ENABLED = False
    settings.API_KEY = None
    settings.FIRST_AIRLINE_API_KEY = None
    settings.ENTROPY_SEED = "test-seed"
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


@pytest.fixture
def event_bus():
    return EventBus(history_size=500)


@pytest.fixture
def seeded_generator():
    return IndexGenerator(IndexGeneratorConfig(), SeededEntropySource("flightsurety-tests"))


@pytest.fixture
def fixed_generator():
    return FixedIndexGenerator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def consensus(fixed_generator, event_bus, clock):
    """Registry, tracker and engine sharing one fixed-index generator"""
    registry = OracleRegistry(fixed_generator, ORACLE_FEE, event_bus)
    tracker = RequestTracker(fixed_generator, request_ttl_seconds=0, event_bus=event_bus, clock=clock)
    engine = ConsensusEngine(
        registry, tracker, ConsensusConfig(response_threshold=3, allowed_values=STATUS_CODES), event_bus
    )
    return engine


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def service(fixed_generator, event_bus):
    return FlightSuretyService(
        owner="owner",
        first_airline="airline-0",
        index_generator=fixed_generator,
        registration_fee=ORACLE_FEE,
        event_bus=event_bus,
    )
