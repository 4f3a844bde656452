"""
HTTP tests for the Survey Reward Ledger API.
"""

import pytest
from fastapi.testclient import TestClient

from survey_ledger.access import StaticAccessControl
from survey_ledger.api import app, get_ledger_service
from survey_ledger.service import LedgerService
from survey_ledger.tokens import TokenBank

ADMIN_HEADERS = {"X-Caller-Id": "admin"}
LEDGER_ACCOUNT = "survey-ledger"

client = TestClient(app)


@pytest.fixture
def service():
    service = LedgerService(
        tokens=TokenBank(custodian=LEDGER_ACCOUNT),
        access=StaticAccessControl(["admin"]),
    )
    app.dependency_overrides[get_ledger_service] = lambda: service
    yield service
    app.dependency_overrides.clear()
    service.close()


@pytest.fixture
def configured(service):
    assert client.post("/rewardToken", json={"token_id": "TKN"}, headers=ADMIN_HEADERS).status_code == 200
    resp = client.post("/surveys", json={"reward_amount": 100}, headers=ADMIN_HEADERS)
    assert resp.json() == {"survey_id": 0}
    return service


def test_health(service):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


class TestAdminEndpoints:
    """Tests for administrator routes."""

    def test_set_token_requires_admin(self, service):
        resp = client.post("/rewardToken", json={"token_id": "TKN"}, headers={"X-Caller-Id": "alice"})
        assert resp.status_code == 403

        resp = client.post("/rewardToken", json={"token_id": "TKN"})
        assert resp.status_code == 403

    @pytest.mark.parametrize("body", [{"token_id": ""}, {}])
    def test_set_token_empty(self, service, body):
        resp = client.post("/rewardToken", json=body, headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    def test_create_survey_not_configured(self, service):
        resp = client.post("/surveys", json={"reward_amount": 100}, headers=ADMIN_HEADERS)
        assert resp.status_code == 409

    @pytest.mark.parametrize("amount", [0, -3])
    def test_create_survey_bad_amount(self, configured, amount):
        resp = client.post("/surveys", json={"reward_amount": amount}, headers=ADMIN_HEADERS)
        assert resp.status_code == 400

    def test_toggle_status(self, configured):
        resp = client.post("/surveys/0/status", json={"active": False}, headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        assert client.post("/surveys/9/status", json={"active": False}, headers=ADMIN_HEADERS).status_code == 404
        assert client.post("/surveys/0/status", json={"active": True}).status_code == 403

    def test_withdraw(self, configured):
        configured.tokens.mint("TKN", LEDGER_ACCOUNT, 80)

        resp = client.post("/withdraw", json={"amount": 30}, headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"to": "admin", "amount": 30, "token_id": "TKN"}

        assert client.get("/balance").json()["balance"] == 50
        assert client.post("/withdraw", json={"amount": 500}, headers=ADMIN_HEADERS).status_code == 502
        assert client.post("/withdraw", json={"amount": 10}).status_code == 403

    def test_withdraw_not_configured(self, service):
        resp = client.post("/withdraw", json={"amount": 10}, headers=ADMIN_HEADERS)
        assert resp.status_code == 409


class TestClaimEndpoints:
    """Tests for claim and participation routes."""

    def test_claim_scenario(self, configured):
        configured.tokens.mint("TKN", LEDGER_ACCOUNT, 100)

        resp = client.post("/surveys/0/claim", json={"user_id": "alice", "response_proof": "hash1"})
        assert resp.status_code == 200
        assert resp.json()["amount"] == 100

        resp = client.get("/surveys/0/participation/alice")
        assert resp.json()["has_participated"] is True

        resp = client.post("/surveys/0/claim", json={"user_id": "alice", "response_proof": "hash2"})
        assert resp.status_code == 409

    def test_claim_insufficient_funds(self, configured):
        resp = client.post("/surveys/0/claim", json={"user_id": "alice", "response_proof": "hash1"})
        assert resp.status_code == 402
        assert client.get("/surveys/0/participation/alice").json()["has_participated"] is False

    def test_claim_inactive(self, configured):
        configured.tokens.mint("TKN", LEDGER_ACCOUNT, 100)
        client.post("/surveys/0/status", json={"active": False}, headers=ADMIN_HEADERS)

        resp = client.post("/surveys/0/claim", json={"user_id": "alice", "response_proof": "hash1"})
        assert resp.status_code == 403

    def test_claim_unknown_survey(self, configured):
        resp = client.post("/surveys/5/claim", json={"user_id": "alice", "response_proof": "hash1"})
        assert resp.status_code == 404

    def test_claim_empty_proof(self, configured):
        configured.tokens.mint("TKN", LEDGER_ACCOUNT, 100)
        resp = client.post("/surveys/0/claim", json={"user_id": "alice", "response_proof": ""})
        assert resp.status_code == 400

    def test_participation_unknown_survey(self, service):
        resp = client.get("/surveys/3/participation/bob")
        assert resp.status_code == 200
        assert resp.json() == {"survey_id": 3, "user_id": "bob", "has_participated": False}


class TestReadEndpoints:
    """Tests for surveys, configuration and events."""

    def test_surveys(self, configured):
        assert [s["id"] for s in client.get("/surveys").json()] == [0]
        assert client.get("/surveys/0").json()["reward_amount"] == 100
        assert client.get("/surveys/1").status_code == 404

    def test_config(self, configured):
        assert client.get("/config").json() == {
            "reward_token_id": "TKN",
            "ledger_account": LEDGER_ACCOUNT,
            "survey_count": 1,
        }

    def test_balance_not_configured(self, service):
        assert client.get("/balance").status_code == 409

    def test_events(self, configured):
        resp = client.get("/events")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_count"] == 2
        assert [e["event_type"] for e in body["events"]] == ["REWARD_TOKEN_SET", "SURVEY_CREATED"]

    @pytest.mark.parametrize("query", ["limit=0", "limit=-1", "offset=-1"])
    def test_events_rejects_bad_page(self, configured, query):
        assert client.get(f"/events?{query}").status_code == 422

    def test_balance_reports_token_and_account(self, configured):
        configured.tokens.mint("TKN", LEDGER_ACCOUNT, 70)
        assert client.get("/balance").json() == {"token_id": "TKN", "account": LEDGER_ACCOUNT, "balance": 70}


def test_serverless_handler_wraps_app():
    from api.index import handler

    assert handler.app is app
