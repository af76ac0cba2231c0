# FlightSurety Models Package
from .database import Base, engine, SessionLocal, build_engine
from .event_log import EventRecord, EventLogWriter

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "build_engine",
    "EventRecord",
    "EventLogWriter",
]
