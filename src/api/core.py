# src/api/core.py
"""
FlightSurety API - HTTP and WebSocket surface of the insurance scheme

Oracles register and submit reports here, airlines vote and fund, passengers
insure and withdraw. Oracles and airlines act with the key issued when they
register (X-Identity-Key); the acting identity never comes from the body.
Every notification is streamed on /ws/events, optionally fanned out to Redis
and written to the audit log.
"""

import logging
import logging.config
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, validator
from sqlalchemy.orm import sessionmaker
import redis.asyncio as aioredis

from src.auth import CredentialStore, require_identity, verify_api_key
from src.config import Settings, get_settings
from src.errors import (
    AlreadyRegistered,
    DuplicateSubmission,
    DuplicateVote,
    FlightSuretyError,
    IndexMismatch,
    InsufficientFee,
    NotFunded,
    NotOperational,
    NotRegistered,
    OutOfRange,
    RequestClosedOrUnknown,
    Unauthorized,
)
from src.events import Notification, NotificationType, RedisEventPublisher
from src.flight_surety import FlightSuretyService
from src.ledger import SUBJECT_SEPARATOR
from src.middleware import CorrelationIdMiddleware
from src.models import Base, EventLogWriter, SessionLocal, engine

logger = logging.getLogger("flightsurety.api")


ERROR_STATUS: Dict[type, int] = {
    NotRegistered: 404,
    AlreadyRegistered: 409,
    RequestClosedOrUnknown: 409,
    DuplicateVote: 409,
    DuplicateSubmission: 409,
    IndexMismatch: 403,
    Unauthorized: 403,
    NotFunded: 403,
    InsufficientFee: 402,
    OutOfRange: 422,
    NotOperational: 503,
}


# =============================================================================
# Pydantic Models
# =============================================================================

class _Strict(BaseModel):
    class Config:
        extra = "forbid"  # Reject unknown fields


def _no_separator(v: str) -> str:
    if SUBJECT_SEPARATOR in v:
        raise ValueError(f"must not contain '{SUBJECT_SEPARATOR}'")
    return v


class OracleRegistration(_Strict):
    oracle: str = Field(..., min_length=1, max_length=128)
    fee: int = Field(..., ge=0, description="Registration fee in wei")


class AirlineApplication(_Strict):
    airline: str = Field(..., min_length=1, max_length=128)

    @validator("airline")
    def airline_name_unambiguous(cls, v):
        return _no_separator(v)


class OracleResponseSubmit(_Strict):
    """Report body; the reporting oracle is the holder of X-Identity-Key"""
    index: int
    airline: str = Field(..., min_length=1, max_length=128)
    flight: str = Field(..., min_length=1, max_length=64)
    timestamp: int = Field(..., ge=0)
    status: int

    @validator("airline", "flight")
    def names_unambiguous(cls, v):
        return _no_separator(v)

    @validator("flight")
    def flight_code_trimmed(cls, v):
        if not v.strip():
            raise ValueError("flight code must not be blank")
        return v.strip()


class FlightRegistration(_Strict):
    airline: str = Field(..., min_length=1, max_length=128)
    flight: str = Field(..., min_length=1, max_length=64)
    timestamp: int = Field(..., ge=0)

    @validator("airline", "flight")
    def names_unambiguous(cls, v):
        return _no_separator(v)


class StatusRequestCreate(FlightRegistration):
    requester: str = Field(..., min_length=1, max_length=128)


class AdmissionVoteCast(_Strict):
    """Vote body; the voter is the holder of X-Identity-Key"""
    candidate: str = Field(..., min_length=1, max_length=128)

    @validator("candidate")
    def candidate_name_unambiguous(cls, v):
        return _no_separator(v)


class FundingSubmit(_Strict):
    amount: int = Field(..., gt=0, description="Funding in wei")


class InsurancePurchase(FlightRegistration):
    passenger: str = Field(..., min_length=1, max_length=128)
    amount: int = Field(..., description="Premium in wei")


class AdminCall(_Strict):
    caller: str = Field(..., min_length=1, max_length=128)


class OperationalUpdate(AdminCall):
    operational: bool


class RequestCancel(AdminCall):
    index: int
    airline: str
    flight: str
    timestamp: int


# =============================================================================
# WebSocket Event Stream
# =============================================================================

class EventStreamManager:
    """Pushes every notification to connected WebSocket observers"""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast(self, notification: Notification):
        message = notification.to_dict()
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping event stream connection: {e}")
                self.disconnect(connection)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    service: Optional[FlightSuretyService] = None,
    session_factory: Optional[sessionmaker] = None,
    redis_client: Optional[Any] = None,
) -> FastAPI:
    """
    Build the API around a FlightSuretyService.

    Args:
        settings: configuration (defaults to the environment)
        service: pre-wired service (defaults to one built from settings)
        session_factory: audit log sessions (defaults to SessionLocal when enabled)
        redis_client: redis.asyncio client for event fan-out (built from settings when enabled)
    """
    settings = settings or get_settings()
    service = service or FlightSuretyService.from_settings(settings)

    app = FastAPI(
        title="FlightSurety Oracle Service",
        description="Decentralized flight delay insurance with oracle consensus",
        version="1.0.0",
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.state.settings = settings
    app.state.service = service
    app.state.streams = EventStreamManager()
    app.state.event_log = None
    app.state.redis_publisher = None
    app.state.oracle_credentials = CredentialStore("oracle")
    app.state.airline_credentials = CredentialStore("airline")

    if settings.FIRST_AIRLINE_API_KEY:
        app.state.airline_credentials.issue(service.first_airline, settings.FIRST_AIRLINE_API_KEY)
    else:
        logger.warning(
            f"FIRST_AIRLINE_API_KEY not configured - {service.first_airline} cannot vote or register flights"
        )

    service.event_bus.subscribe(app.state.streams.broadcast)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @app.on_event("startup")
    async def configure_observers():
        """Configure logging, the audit log and the Redis fan-out"""
        if not settings.is_testing:
            logging.config.dictConfig(settings.get_log_config())

        factory = session_factory
        if factory is None and settings.EVENT_LOG_ENABLED:
            Base.metadata.create_all(bind=engine)
            factory = SessionLocal
        if factory is not None:
            app.state.event_log = EventLogWriter(factory)
            service.event_bus.subscribe(app.state.event_log)
            logger.info("Audit log enabled")

        client = redis_client
        if client is None and settings.EVENTS_REDIS_ENABLED:
            client = aioredis.from_url(settings.REDIS_URL)
        if client is not None:
            app.state.redis_publisher = RedisEventPublisher(client, settings.EVENTS_REDIS_CHANNEL)
            service.event_bus.subscribe(app.state.redis_publisher)
            logger.info(f"Publishing events to Redis channel {settings.EVENTS_REDIS_CHANNEL}")

    @app.on_event("shutdown")
    async def detach_observers():
        publisher = app.state.redis_publisher
        if publisher is not None:
            service.event_bus.unsubscribe(publisher)
            await publisher.close()
        if app.state.event_log is not None:
            service.event_bus.unsubscribe(app.state.event_log)

    @app.exception_handler(FlightSuretyError)
    async def domain_error_handler(request: Request, exc: FlightSuretyError):
        status_code = ERROR_STATUS.get(type(exc), 400)
        logger.info(f"{request.method} {request.url.path} rejected: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy" if service.is_operational else "paused",
            "operational": service.is_operational,
            "oracles": service.registry.count(),
            "open_requests": len(service.tracker.open_requests()),
            "registered_airlines": service.ledger.get_registered_airline_count(),
            "event_stream_connections": len(app.state.streams.active_connections),
            "timestamp": datetime.utcnow().isoformat(),
        }

    @app.get("/status")
    async def get_status():
        return service.get_status()

    # =========================================================================
    # Oracles
    # =========================================================================

    @app.post("/oracles", status_code=201)
    async def register_oracle(body: OracleRegistration):
        """Register an oracle; the returned api_key is shown only once"""
        indexes = await service.register_oracle(body.oracle, body.fee)
        api_key = app.state.oracle_credentials.issue(body.oracle)
        return {"oracle": body.oracle, "indexes": indexes, "api_key": api_key}

    @app.get("/oracles/{oracle}/indexes")
    async def get_oracle_indexes(oracle: str):
        return {"oracle": oracle, "indexes": service.get_oracle_indexes(oracle)}

    @app.post("/flights/status-requests", status_code=201)
    async def fetch_flight_status(body: StatusRequestCreate):
        index = await service.fetch_flight_status(body.airline, body.flight, body.timestamp, body.requester)
        return {
            "index": index,
            "airline": body.airline,
            "flight": body.flight,
            "timestamp": body.timestamp,
        }

    @app.post("/oracle-responses", status_code=202)
    async def submit_oracle_response(
        body: OracleResponseSubmit,
        oracle: str = Depends(require_identity("oracle_credentials")),
    ):
        result = await service.submit_oracle_response(
            oracle, body.index, body.airline, body.flight, body.timestamp, body.status
        )
        return result.to_dict()

    # =========================================================================
    # Airlines and Flights
    # =========================================================================

    @app.post("/airlines/applications", status_code=201)
    async def apply_airline(body: AirlineApplication):
        """Issue a credential to a prospective airline; votes admit it later"""
        api_key = app.state.airline_credentials.issue(body.airline)
        return {"airline": body.airline, "api_key": api_key}

    @app.post("/airlines/votes")
    async def vote_airline(
        body: AdmissionVoteCast,
        voter: str = Depends(require_identity("airline_credentials")),
    ):
        if not app.state.airline_credentials.has(body.candidate):
            raise NotRegistered("Airline application", body.candidate)
        result = await service.vote_airline(body.candidate, voter)
        return result.to_dict()

    @app.post("/airlines/{airline}/funding")
    async def fund_airline(airline: str, body: FundingSubmit):
        total = service.fund_airline(airline, body.amount)
        return {"airline": airline, "funded": total}

    @app.post("/flights", status_code=201)
    async def register_flight(
        body: FlightRegistration,
        airline: str = Depends(require_identity("airline_credentials")),
    ):
        if body.airline != airline:
            raise Unauthorized(airline, f"register flights for {body.airline}")
        subject = service.register_flight(body.airline, body.flight, body.timestamp)
        return {"subject": subject, "timestamp": body.timestamp}

    # =========================================================================
    # Passengers
    # =========================================================================

    @app.post("/insurance", status_code=201)
    async def buy_insurance(body: InsurancePurchase):
        premium = service.buy_insurance(body.passenger, body.airline, body.flight, body.timestamp, body.amount)
        return {"passenger": body.passenger, "premium": premium}

    @app.get("/passengers/{passenger}/credit")
    async def get_credit(passenger: str):
        return {"passenger": passenger, "credit": service.get_credit(passenger)}

    @app.post("/passengers/{passenger}/withdrawals")
    async def withdraw(passenger: str):
        return {"passenger": passenger, "withdrawn": service.withdraw(passenger)}

    # =========================================================================
    # Administration
    # =========================================================================

    @app.put("/admin/operational")
    async def set_operational(body: OperationalUpdate, api_key: str = Depends(verify_api_key)):
        service.set_operational(body.caller, body.operational)
        return {"operational": service.is_operational}

    @app.post("/admin/status-requests/cancel")
    async def cancel_request(body: RequestCancel, api_key: str = Depends(verify_api_key)):
        request = await service.cancel_request(body.caller, body.index, body.airline, body.flight, body.timestamp)
        return request.to_dict()

    @app.post("/admin/sweep")
    async def sweep(body: AdminCall, api_key: str = Depends(verify_api_key)):
        return await service.sweep(body.caller)

    # =========================================================================
    # Events
    # =========================================================================

    @app.get("/events")
    async def list_events(
        type: Optional[NotificationType] = None,
        limit: int = Query(100, ge=1),
    ) -> List[Dict[str, Any]]:
        return [n.to_dict() for n in service.event_bus.history(type=type, limit=limit)]

    @app.websocket("/ws/events")
    async def event_stream(websocket: WebSocket):
        streams: EventStreamManager = app.state.streams
        await streams.connect(websocket)
        try:
            while True:
                # Observers only listen; inbound frames are keep-alives
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            streams.disconnect(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=get_settings().FASTAPI_HOST, port=get_settings().FASTAPI_PORT)
