# src/oracle_consensus/entropy.py
"""
Index Assignment Generator - pseudo-random responsibility slots for oracles

Each draw hashes three inputs:
- an entropy sample the submitting oracle cannot predict or bias
- the seed identity (oracle or requester)
- a process-wide nonce that advances on every draw and wraps at the ceiling

Draws are kept in a bounded audit trail so observers can recompute any index
from (entropy, identity, nonce).
"""

import hashlib
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger("flightsurety.oracle.entropy")


class EntropySource(ABC):
    """Supplies unpredictable bytes for index draws"""

    @abstractmethod
    def entropy(self) -> bytes:
        """Return a fresh entropy sample"""


class SystemEntropySource(EntropySource):
    """OS CSPRNG entropy for production use"""

    def __init__(self, num_bytes: int = 32):
        self.num_bytes = num_bytes

    def entropy(self) -> bytes:
        return secrets.token_bytes(self.num_bytes)


class SeededEntropySource(EntropySource):
    """
    Deterministic hash chain over a seed.

    Used by tests and for replaying an audit; never for production traffic,
    since anyone who knows the seed can predict every index.
    """

    def __init__(self, seed: str):
        self._state = hashlib.sha256(seed.encode("utf-8")).digest()

    def entropy(self) -> bytes:
        self._state = hashlib.sha256(self._state).digest()
        return self._state


def entropy_source_from_settings(settings: Any) -> EntropySource:
    """Seeded source when ENTROPY_SEED is configured, OS entropy otherwise"""
    if settings.ENTROPY_SEED:
        logger.warning("ENTROPY_SEED is set - oracle indexes are predictable")
        return SeededEntropySource(settings.ENTROPY_SEED)
    return SystemEntropySource()


@dataclass
class IndexGeneratorConfig:
    """Configuration for index assignment"""
    bound: int = 10               # indexes are drawn from [0, bound)
    index_count: int = 3          # indexes per oracle
    nonce_ceiling: int = 256      # nonce wraps to 0 when it reaches this
    audit_trail_size: int = 1000

    def __post_init__(self):
        if self.index_count > self.bound:
            raise ValueError(
                f"Cannot draw {self.index_count} distinct indexes from a bound of {self.bound}"
            )
        if self.nonce_ceiling < 1:
            raise ValueError("nonce_ceiling must be positive")

    @classmethod
    def from_settings(cls, settings: Any) -> "IndexGeneratorConfig":
        return cls(
            bound=settings.ORACLE_INDEX_BOUND,
            index_count=settings.ORACLE_INDEX_COUNT,
            nonce_ceiling=settings.ORACLE_NONCE_CEILING,
        )


@dataclass
class IndexDraw:
    """Record of a single draw, enough to recompute it"""
    seed_identity: str
    nonce: int
    entropy: str
    value: int
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed_identity": self.seed_identity,
            "nonce": self.nonce,
            "entropy": self.entropy,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }


def derive_index(entropy: bytes, seed_identity: str, nonce: int, bound: int) -> int:
    """Hash (entropy, identity, nonce) down to an index in [0, bound)"""
    digest = hashlib.sha256(
        entropy + seed_identity.encode("utf-8") + nonce.to_bytes(4, "big")
    ).digest()
    return int.from_bytes(digest, "big") % bound


class IndexGenerator:
    """
    Draws indexes for oracle registration and status requests.

    The nonce is the only state shared across callers; it is advanced under a
    lock so two draws never reuse the same (entropy, nonce) pair.
    """

    def __init__(
        self,
        config: Optional[IndexGeneratorConfig] = None,
        entropy_source: Optional[EntropySource] = None,
    ):
        self.config = config or IndexGeneratorConfig()
        self.entropy_source = entropy_source or SystemEntropySource()
        self._nonce = 0
        self._nonce_lock = threading.Lock()
        self._draws: Deque[IndexDraw] = deque(maxlen=self.config.audit_trail_size)

        logger.info(
            f"IndexGenerator created: bound={self.config.bound}, "
            f"count={self.config.index_count}, nonce_ceiling={self.config.nonce_ceiling}, "
            f"source={type(self.entropy_source).__name__}"
        )

    @property
    def nonce(self) -> int:
        """Nonce the next draw will use"""
        return self._nonce

    def next_index(self, seed_identity: str) -> int:
        """Draw one index in [0, bound) for the given identity"""
        with self._nonce_lock:
            nonce = self._nonce
            self._nonce = (self._nonce + 1) % self.config.nonce_ceiling
            entropy = self.entropy_source.entropy()
            value = derive_index(entropy, seed_identity, nonce, self.config.bound)
            self._draws.append(
                IndexDraw(seed_identity=seed_identity, nonce=nonce, entropy=entropy.hex(), value=value)
            )
        return value

    def generate_indexes(self, seed_identity: str) -> List[int]:
        """
        Draw index_count pairwise distinct indexes.

        Collisions are redrawn; with the default bound of 10 and 3 indexes a
        retry is rare and there is no retry limit.
        """
        indexes: List[int] = []
        retries = 0
        while len(indexes) < self.config.index_count:
            index = self.next_index(seed_identity)
            if index in indexes:
                retries += 1
                continue
            indexes.append(index)

        if retries:
            logger.debug(f"Index collision for {seed_identity}: {retries} redraw(s)")
        return indexes

    def audit_trail(self, seed_identity: Optional[str] = None) -> List[IndexDraw]:
        """Recent draws, optionally for one identity"""
        return [d for d in self._draws if seed_identity is None or d.seed_identity == seed_identity]

    def verify_draw(self, draw: IndexDraw) -> bool:
        """Recompute a recorded draw and check it matches"""
        expected = derive_index(bytes.fromhex(draw.entropy), draw.seed_identity, draw.nonce, self.config.bound)
        return expected == draw.value
