# src/config.py
"""
FlightSurety Configuration Module - Environment-based configuration
Oracle consensus, airline admission and ledger limits are all tunable here.
"""

import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

WEI_PER_ETHER = 10 ** 18


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = _env_bool("DEBUG", "true")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "flightsurety.log")
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "100"))

    # ==========================================================================
    # FastAPI Settings
    # ==========================================================================
    FASTAPI_HOST: str = os.getenv("FASTAPI_HOST", "0.0.0.0")
    FASTAPI_PORT: int = int(os.getenv("FASTAPI_PORT", "8000"))
    API_KEY: Optional[str] = os.getenv("FLIGHTSURETY_API_KEY") or None

    # ==========================================================================
    # Contract Roles
    # ==========================================================================
    OWNER_ADDRESS: str = os.getenv("OWNER_ADDRESS", "owner")
    FIRST_AIRLINE: str = os.getenv("FIRST_AIRLINE", "airline-0")
    # Credential for the first airline; without it the first airline cannot act over the API
    FIRST_AIRLINE_API_KEY: Optional[str] = os.getenv("FIRST_AIRLINE_API_KEY") or None

    # ==========================================================================
    # Oracle Consensus
    # ==========================================================================
    ORACLE_INDEX_BOUND: int = int(os.getenv("ORACLE_INDEX_BOUND", "10"))
    ORACLE_INDEX_COUNT: int = int(os.getenv("ORACLE_INDEX_COUNT", "3"))
    ORACLE_NONCE_CEILING: int = int(os.getenv("ORACLE_NONCE_CEILING", "256"))
    ORACLE_REGISTRATION_FEE_WEI: int = int(
        os.getenv("ORACLE_REGISTRATION_FEE_WEI", str(WEI_PER_ETHER))
    )
    ORACLE_RESPONSE_THRESHOLD: int = int(os.getenv("ORACLE_RESPONSE_THRESHOLD", "3"))
    # 0 keeps requests open until consensus or explicit cancellation
    REQUEST_TTL_SECONDS: float = float(os.getenv("REQUEST_TTL_SECONDS", "0"))
    ENTROPY_SEED: Optional[str] = os.getenv("ENTROPY_SEED") or None

    # ==========================================================================
    # Airline Admission
    # ==========================================================================
    MIN_CONSENSUS_AIRLINES: int = int(os.getenv("MIN_CONSENSUS_AIRLINES", "4"))
    ADMISSION_QUORUM_POLICY: str = os.getenv("ADMISSION_QUORUM_POLICY", "half")
    ADMISSION_VOTE_TTL_SECONDS: float = float(os.getenv("ADMISSION_VOTE_TTL_SECONDS", "0"))

    # ==========================================================================
    # Ledger Limits
    # ==========================================================================
    AIRLINE_FUNDING_WEI: int = int(os.getenv("AIRLINE_FUNDING_WEI", str(10 * WEI_PER_ETHER)))
    INSURANCE_CAP_WEI: int = int(os.getenv("INSURANCE_CAP_WEI", str(WEI_PER_ETHER)))

    # ==========================================================================
    # Event Fan-out and Audit Log
    # ==========================================================================
    EVENT_HISTORY_SIZE: int = int(os.getenv("EVENT_HISTORY_SIZE", "1000"))
    EVENT_LOG_ENABLED: bool = _env_bool("EVENT_LOG_ENABLED", "true")
    EVENTS_REDIS_ENABLED: bool = _env_bool("EVENTS_REDIS_ENABLED", "false")
    EVENTS_REDIS_CHANNEL: str = os.getenv("EVENTS_REDIS_CHANNEL", "flightsurety:events")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD") or None

    @property
    def DATABASE_URL(self) -> str:
        """Get database URL with fallback for development"""
        return os.getenv("DATABASE_URL") or "sqlite:///./flightsurety.db"

    @property
    def REDIS_URL(self) -> str:
        """Construct Redis URL from components"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT.lower() == "testing"

    def get_log_config(self) -> dict:
        """Get logging configuration for logging.config.dictConfig"""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "src.middleware.correlation.CorrelationIdFilter",
                },
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] [corr-id:%(correlation_id)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["correlation"],
                    "stream": "ext://sys.stdout"
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "default",
                    "filters": ["correlation"],
                    "filename": self.LOG_FILE,
                    "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                    "backupCount": 5
                }
            },
            "loggers": {
                "flightsurety": {"level": self.LOG_LEVEL, "propagate": True},
            },
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": ["console", "file"]
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
