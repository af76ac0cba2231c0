# src/models/event_log.py
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import Session, sessionmaker

from src.events import Notification
from .database import Base

logger = logging.getLogger("flightsurety.audit")


class EventRecord(Base):
    """Audit log entry, one per published notification"""
    __tablename__ = "event_records"

    event_id = Column(String(36), primary_key=True, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    subject = Column(String(255), nullable=True, index=True)
    payload_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.event_type,
            "subject": self.subject,
            "payload": json.loads(self.payload_json) if self.payload_json else {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class EventLogWriter:
    """
    Event bus subscriber persisting every notification.

    Lets auditors replay index draws, votes and finalizations after the
    in-memory history has rolled over.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.written = 0

    def __call__(self, notification: Notification):
        db: Session = self.session_factory()
        try:
            db.add(EventRecord(
                event_id=notification.event_id,
                event_type=notification.type.value,
                subject=notification.subject,
                payload_json=json.dumps(notification.payload, default=str),
                created_at=notification.timestamp,
            ))
            db.commit()
            self.written += 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def recent(self, limit: int = 100, event_type: Optional[str] = None) -> List[EventRecord]:
        db: Session = self.session_factory()
        try:
            query = db.query(EventRecord)
            if event_type:
                query = query.filter(EventRecord.event_type == event_type)
            return query.order_by(EventRecord.created_at.desc()).limit(limit).all()
        finally:
            db.close()
