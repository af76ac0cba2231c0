# tests/test_api.py
"""
FlightSurety API Tests

Tests:
1. Full insurance flow over HTTP: fund, register, insure, consensus, withdraw
2. Domain errors map to HTTP status codes
3. Oracles and airlines act only through their issued credentials
4. Admin endpoints require the API key when one is configured
5. Event stream over WebSocket, Redis fan-out and the audit log
"""

from typing import Dict
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.core import create_app
from src.config import WEI_PER_ETHER
from src.flight_surety import FlightSuretyService
from src.models import Base, EventRecord
from tests.conftest import AIRLINE_FUNDING, ORACLE_FEE, FixedIndexGenerator, make_settings

TS = 1700000000
AIRLINE_KEY = "airline-0-test-key"


def build_service() -> FlightSuretyService:
    return FlightSuretyService(
        owner="owner",
        first_airline="airline-0",
        index_generator=FixedIndexGenerator(),
        registration_fee=ORACLE_FEE,
    )


def as_airline(key: str = AIRLINE_KEY) -> Dict[str, str]:
    return {"X-Identity-Key": key}


@pytest.fixture
def settings():
    return make_settings(FIRST_AIRLINE_API_KEY=AIRLINE_KEY)


@pytest.fixture
def client(settings):
    app = create_app(settings=settings, service=build_service())
    with TestClient(app) as test_client:
        yield test_client


def register_oracles(client: TestClient, count: int) -> Dict[str, str]:
    """Register oracle-0..count-1; returns oracle -> issued key"""
    keys = {}
    for i in range(count):
        response = client.post("/oracles", json={"oracle": f"oracle-{i}", "fee": ORACLE_FEE})
        assert response.status_code == 201
        keys[f"oracle-{i}"] = response.json()["api_key"]
    return keys


def prepare_flight(client: TestClient, oracles: int = 3) -> Dict[str, str]:
    assert client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING}).status_code == 200
    assert client.post(
        "/flights", json={"airline": "airline-0", "flight": "ND1309", "timestamp": TS}, headers=as_airline()
    ).status_code == 201
    return register_oracles(client, oracles)


def open_request(client: TestClient) -> int:
    response = client.post(
        "/flights/status-requests",
        json={"airline": "airline-0", "flight": "ND1309", "timestamp": TS, "requester": "passenger-1"},
    )
    assert response.status_code == 201
    return response.json()["index"]


def report(client: TestClient, key: str, index: int, status: int = 20):
    return client.post(
        "/oracle-responses",
        json={
            "index": index,
            "airline": "airline-0",
            "flight": "ND1309",
            "timestamp": TS,
            "status": status,
        },
        headers={"X-Identity-Key": key},
    )


# =============================================================================
# Test: Happy Path
# =============================================================================

class TestInsuranceFlow:
    """Fund, insure, reach consensus, withdraw"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["operational"] is True
        assert response.headers["X-Correlation-ID"].startswith("corr-")

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "corr-fixed"})
        assert response.headers["X-Correlation-ID"] == "corr-fixed"

    def test_late_flight_pays_out(self, client):
        keys = prepare_flight(client)
        purchase = client.post(
            "/insurance",
            json={"passenger": "passenger-1", "airline": "airline-0", "flight": "ND1309",
                  "timestamp": TS, "amount": WEI_PER_ETHER},
        )
        assert purchase.status_code == 201
        assert purchase.json()["premium"] == WEI_PER_ETHER

        index = open_request(client)
        results = [report(client, keys[f"oracle-{i}"], index) for i in range(3)]

        assert [r.status_code for r in results] == [202, 202, 202]
        assert [r.json()["finalized"] for r in results] == [False, False, True]

        credit = client.get("/passengers/passenger-1/credit").json()
        assert credit["credit"] == 3 * WEI_PER_ETHER // 2

        withdrawal = client.post("/passengers/passenger-1/withdrawals")
        assert withdrawal.json()["withdrawn"] == 3 * WEI_PER_ETHER // 2

    def test_oracle_indexes_lookup(self, client):
        client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})

        response = client.get("/oracles/oracle-0/indexes")
        assert response.json() == {"oracle": "oracle-0", "indexes": [0, 1, 2]}

    def test_airline_vote(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})
        application = client.post("/airlines/applications", json={"airline": "airline-1"})
        assert application.status_code == 201

        response = client.post("/airlines/votes", json={"candidate": "airline-1"}, headers=as_airline())

        assert response.status_code == 200
        assert response.json()["voter"] == "airline-0"
        assert response.json()["state"] == "admitted"

    def test_admitted_airline_registers_flights(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})
        key = client.post("/airlines/applications", json={"airline": "airline-1"}).json()["api_key"]
        client.post("/airlines/votes", json={"candidate": "airline-1"}, headers=as_airline())
        client.post("/airlines/airline-1/funding", json={"amount": AIRLINE_FUNDING})

        response = client.post(
            "/flights", json={"airline": "airline-1", "flight": "UA100", "timestamp": TS}, headers=as_airline(key)
        )

        assert response.status_code == 201
        assert response.json()["subject"] == "airline-1:UA100"

    def test_status_snapshot(self, client):
        status = client.get("/status").json()
        assert status["consensus"]["threshold"] == 3
        assert status["admission"]["registered_airlines"] == 1


# =============================================================================
# Test: Error Mapping
# =============================================================================

class TestErrorMapping:
    """Domain errors become structured HTTP errors"""

    def test_insufficient_fee(self, client):
        response = client.post("/oracles", json={"oracle": "oracle-0", "fee": 1})

        assert response.status_code == 402
        assert response.json()["error"] == "InsufficientFee"

    def test_duplicate_oracle(self, client):
        client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})
        response = client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})
        assert response.status_code == 409

    def test_unknown_oracle(self, client):
        assert client.get("/oracles/ghost/indexes").status_code == 404

    def test_index_mismatch(self, client):
        keys = prepare_flight(client, oracles=1)
        open_request(client)

        response = report(client, keys["oracle-0"], 7)
        assert response.status_code == 403
        assert response.json()["error"] == "IndexMismatch"

    def test_duplicate_submission(self, client):
        keys = prepare_flight(client, oracles=1)
        index = open_request(client)
        report(client, keys["oracle-0"], index)

        response = report(client, keys["oracle-0"], index, status=10)
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateSubmission"

    def test_status_out_of_range(self, client):
        keys = prepare_flight(client, oracles=1)
        index = open_request(client)

        assert report(client, keys["oracle-0"], index, status=25).status_code == 422

    def test_unknown_fields_rejected(self, client):
        response = client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE, "extra": 1})
        assert response.status_code == 422

    def test_unfunded_flight_registration(self, client):
        response = client.post(
            "/flights", json={"airline": "airline-0", "flight": "ND1309", "timestamp": TS}, headers=as_airline()
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NotFunded"

    def test_paused_service(self, client):
        client.put("/admin/operational", json={"caller": "owner", "operational": False})

        response = client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})
        assert response.status_code == 503
        assert client.get("/health").json()["status"] == "paused"

    def test_separator_in_flight_code_rejected(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})

        response = client.post(
            "/flights", json={"airline": "airline-0", "flight": "ND:1309", "timestamp": TS}, headers=as_airline()
        )
        assert response.status_code == 422

    def test_separator_in_airline_application_rejected(self, client):
        response = client.post("/airlines/applications", json={"airline": "air:line"})
        assert response.status_code == 422

    def test_event_limit_must_be_positive(self, client):
        assert client.get("/events", params={"limit": 0}).status_code == 422
        assert client.get("/events", params={"limit": -5}).status_code == 422


# =============================================================================
# Test: Identity Credentials
# =============================================================================

class TestIdentityCredentials:
    """Oracles and airlines act as the holder of the presented key"""

    def test_registration_issues_key(self, client):
        keys = register_oracles(client, 2)

        assert keys["oracle-0"] != keys["oracle-1"]
        assert client.app.state.oracle_credentials.resolve(keys["oracle-1"]) == "oracle-1"

    def test_report_without_key(self, client):
        prepare_flight(client)
        index = open_request(client)

        response = client.post(
            "/oracle-responses",
            json={"index": index, "airline": "airline-0", "flight": "ND1309", "timestamp": TS, "status": 20},
        )
        assert response.status_code == 401

    def test_report_with_unknown_key(self, client):
        prepare_flight(client)
        index = open_request(client)

        assert report(client, "not-an-issued-key", index).status_code == 403

    def test_oracle_named_in_body_rejected(self, client):
        keys = prepare_flight(client)
        index = open_request(client)

        response = client.post(
            "/oracle-responses",
            json={"oracle": "oracle-1", "index": index, "airline": "airline-0",
                  "flight": "ND1309", "timestamp": TS, "status": 20},
            headers={"X-Identity-Key": keys["oracle-0"]},
        )
        assert response.status_code == 422

    def test_one_key_cannot_stand_in_for_three_oracles(self, client):
        keys = prepare_flight(client)
        index = open_request(client)

        assert report(client, keys["oracle-0"], index).status_code == 202
        assert report(client, keys["oracle-0"], index).status_code == 409

        status = client.get("/status").json()
        assert status["consensus"]["finalized"] == 0

    def test_unregistered_names_cannot_finalize(self, client):
        """Reports that only name an oracle carry no identity"""
        prepare_flight(client)
        index = open_request(client)

        for name in ("honest-0", "honest-1", "honest-2"):
            response = client.post(
                "/oracle-responses",
                json={"index": index, "airline": "airline-0", "flight": "ND1309", "timestamp": TS, "status": 20},
                headers={"X-Identity-Key": name},
            )
            assert response.status_code == 403

        assert client.get("/events", params={"type": "status_finalized"}).json() == []

    def test_vote_without_key(self, client):
        client.post("/airlines/applications", json={"airline": "airline-1"})

        response = client.post("/airlines/votes", json={"candidate": "airline-1"})
        assert response.status_code == 401

    def test_voter_in_body_rejected(self, client):
        client.post("/airlines/applications", json={"airline": "airline-1"})

        response = client.post(
            "/airlines/votes", json={"candidate": "airline-1", "voter": "airline-0"}, headers=as_airline()
        )
        assert response.status_code == 422

    def test_applicant_key_cannot_vote_as_first_airline(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})
        key = client.post("/airlines/applications", json={"airline": "airline-1"}).json()["api_key"]
        client.post("/airlines/applications", json={"airline": "airline-2"})

        response = client.post("/airlines/votes", json={"candidate": "airline-2"}, headers=as_airline(key))

        assert response.status_code == 404
        assert response.json()["detail"] == "Airline airline-1 is not registered"

    def test_vote_for_unknown_applicant(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})

        response = client.post("/airlines/votes", json={"candidate": "airline-9"}, headers=as_airline())
        assert response.status_code == 404

    def test_duplicate_application(self, client):
        client.post("/airlines/applications", json={"airline": "airline-1"})

        response = client.post("/airlines/applications", json={"airline": "airline-1"})
        assert response.status_code == 409

    def test_flight_for_another_airline(self, client):
        client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})
        key = client.post("/airlines/applications", json={"airline": "airline-1"}).json()["api_key"]

        response = client.post(
            "/flights", json={"airline": "airline-0", "flight": "ND1309", "timestamp": TS}, headers=as_airline(key)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_first_airline_without_configured_key(self):
        app = create_app(settings=make_settings(), service=build_service())

        with TestClient(app) as client:
            client.post("/airlines/airline-0/funding", json={"amount": AIRLINE_FUNDING})
            response = client.post(
                "/flights", json={"airline": "airline-0", "flight": "ND1309", "timestamp": TS},
                headers=as_airline(),
            )

        assert response.status_code == 403


# =============================================================================
# Test: Administration
# =============================================================================

class TestAdminEndpoints:
    """Owner-only endpoints behind the API key"""

    @pytest.fixture
    def secured_client(self):
        app = create_app(settings=make_settings(API_KEY="test-secret", FIRST_AIRLINE_API_KEY=AIRLINE_KEY), service=build_service())
        with TestClient(app) as test_client:
            yield test_client

    def test_missing_key(self, secured_client):
        response = secured_client.put("/admin/operational", json={"caller": "owner", "operational": False})
        assert response.status_code == 401

    def test_wrong_key(self, secured_client):
        response = secured_client.put(
            "/admin/operational",
            json={"caller": "owner", "operational": False},
            headers={"X-API-Key": "nope"},
        )
        assert response.status_code == 403

    def test_valid_key_but_not_owner(self, secured_client):
        response = secured_client.put(
            "/admin/operational",
            json={"caller": "airline-0", "operational": False},
            headers={"X-API-Key": "test-secret"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_cancel_request(self, secured_client):
        keys = prepare_flight(secured_client, oracles=1)
        index = open_request(secured_client)

        response = secured_client.post(
            "/admin/status-requests/cancel",
            json={"caller": "owner", "index": index, "airline": "airline-0", "flight": "ND1309", "timestamp": TS},
            headers={"X-API-Key": "test-secret"},
        )

        assert response.status_code == 200
        assert response.json()["state"] == "cancelled"
        assert report(secured_client, keys["oracle-0"], index).status_code == 409

    def test_sweep(self, secured_client):
        response = secured_client.post(
            "/admin/sweep", json={"caller": "owner"}, headers={"X-API-Key": "test-secret"}
        )
        assert response.json() == {"expired_requests": [], "discarded_candidacies": []}


# =============================================================================
# Test: Event Observers
# =============================================================================

class TestEventObservers:
    """WebSocket stream, event history, Redis and the audit log"""

    def test_event_stream(self, client):
        prepare_flight(client, oracles=0)

        with client.websocket_connect("/ws/events") as ws:
            index = open_request(client)
            event = ws.receive_json()

        assert event["type"] == "request_opened"
        assert event["payload"]["index"] == index
        assert event["payload"]["subject"] == "airline-0:ND1309"

    def test_event_history(self, client):
        client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})
        client.post("/oracles", json={"oracle": "oracle-1", "fee": ORACLE_FEE})

        events = client.get("/events", params={"type": "oracle_registered", "limit": 1}).json()
        assert len(events) == 1
        assert events[0]["payload"]["oracle"] == "oracle-1"

    def test_redis_fan_out(self, settings):
        redis_client = AsyncMock()
        app = create_app(settings=settings, service=build_service(), redis_client=redis_client)

        with TestClient(app) as client:
            client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})

        redis_client.publish.assert_awaited_once()
        channel, message = redis_client.publish.await_args.args
        assert channel == settings.EVENTS_REDIS_CHANNEL
        assert '"oracle_registered"' in message
        redis_client.aclose.assert_awaited_once()

    def test_audit_log(self, settings):
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        app = create_app(settings=settings, service=build_service(), session_factory=factory)

        with TestClient(app) as client:
            client.post("/oracles", json={"oracle": "oracle-0", "fee": ORACLE_FEE})
            assert app.state.event_log.written == 1

        db = factory()
        try:
            [record] = db.query(EventRecord).all()
            assert record.event_type == "oracle_registered"
            assert record.subject == "oracle-0"
        finally:
            db.close()
