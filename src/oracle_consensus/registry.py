# src/oracle_consensus/registry.py
"""
Oracle Registry - tracks registered oracles and the indexes each one owns.

Records are created once, never mutated and never removed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.errors import AlreadyRegistered, InsufficientFee, NotRegistered
from src.events import EventBus, NotificationType
from .entropy import IndexGenerator

logger = logging.getLogger("flightsurety.oracle.registry")


@dataclass(frozen=True)
class OracleRecord:
    """A registered oracle and its responsibility slots"""
    identity: str
    indexes: Tuple[int, ...]
    fee_paid: int
    registered_at: datetime = field(default_factory=datetime.utcnow)

    def owns(self, index: int) -> bool:
        return index in self.indexes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "indexes": list(self.indexes),
            "fee_paid": self.fee_paid,
            "registered_at": self.registered_at.isoformat(),
        }


class OracleRegistry:
    """Registers oracles and answers index lookups"""

    def __init__(
        self,
        index_generator: IndexGenerator,
        registration_fee: int,
        event_bus: Optional[EventBus] = None,
    ):
        self.index_generator = index_generator
        self.registration_fee = registration_fee
        self.event_bus = event_bus
        self._oracles: Dict[str, OracleRecord] = {}

    async def register(self, identity: str, fee: int) -> List[int]:
        """
        Register an oracle and assign its indexes.

        Raises:
            InsufficientFee: fee below the registration fee
            AlreadyRegistered: identity already has a record
        """
        if fee < self.registration_fee:
            raise InsufficientFee(fee, self.registration_fee)
        if identity in self._oracles:
            raise AlreadyRegistered("Oracle", identity)

        indexes = tuple(self.index_generator.generate_indexes(identity))
        record = OracleRecord(identity=identity, indexes=indexes, fee_paid=fee)
        self._oracles[identity] = record
        logger.info(f"Oracle {identity} registered with indexes {list(indexes)}")

        if self.event_bus:
            await self.event_bus.publish(
                NotificationType.ORACLE_REGISTERED,
                oracle=identity,
                indexes=list(indexes),
            )
        return list(indexes)

    def lookup(self, identity: str) -> List[int]:
        """Indexes owned by an oracle; raises NotRegistered when absent"""
        return list(self.get(identity).indexes)

    def get(self, identity: str) -> OracleRecord:
        record = self._oracles.get(identity)
        if record is None:
            raise NotRegistered("Oracle", identity)
        return record

    def is_registered(self, identity: str) -> bool:
        return identity in self._oracles

    def holders_of(self, index: int) -> List[str]:
        """Oracles that own the given index, in registration order"""
        return [identity for identity, record in self._oracles.items() if record.owns(index)]

    def count(self) -> int:
        return len(self._oracles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registered_oracles": self.count(),
            "registration_fee": self.registration_fee,
            "index_bound": self.index_generator.config.bound,
        }
