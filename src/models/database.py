# src/models/database.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from src.config import settings


def build_engine(url: str) -> Engine:
    """Create an engine configured for the database type"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False}  # Needed for SQLite
        )
    # PostgreSQL or other databases
    return create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

