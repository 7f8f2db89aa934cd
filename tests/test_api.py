"""
HTTP tests. The shared service is swapped for the fixture service so
every request runs against a fresh in-memory journal.
"""

import pytest
from fastapi.testclient import TestClient

from claimgate.api.deps import set_service
from claimgate.api.routes import OutcomeResponse
from claimgate.core import Signer
from claimgate.main import app
from claimgate.observability import get_metrics


def auth(actor):
    return {"actor_id": str(actor.actor_id), "actor_private_key": actor.private_key}


@pytest.fixture
def client(service, admin):
    set_service(service)
    with TestClient(app) as test_client:
        yield test_client
    set_service(None)


@pytest.fixture
def configured(client, admin):
    response = client.post(
        "/admin/thresholds/default",
        json={
            **auth(admin),
            "min_submissions": 3,
            "majority_threshold_percent": 66,
            "outlier_deviation_percent": 10,
        },
    )
    assert response.status_code == 200
    return response.json()


class TestSystem:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_detailed(self, client):
        response = client.get("/health/detailed")

        assert response.status_code == 200
        checks = response.json()["checks"]
        assert checks["chain_integrity"]["valid"] is True
        assert checks["service"]["paused"] is False
        assert checks["service"]["unrecorded_payouts"] == 0

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_metrics(self, client):
        client.get("/health")
        data = client.get("/metrics").json()

        assert data["requests_total"] >= 1
        assert "append_latency_p50_ms" in data


class TestAdminEndpoints:

    def test_register_and_get_actor(self, client, admin):
        _, public_key = Signer.generate_keypair()
        response = client.post(
            "/admin/actors",
            json={**auth(admin), "name": "oracle-x", "role": "oracle", "public_key": public_key},
        )

        assert response.status_code == 201
        actor_id = response.json()["actor_id"]
        assert response.json()["registered_by"] == str(admin.actor_id)

        fetched = client.get(f"/admin/actors/{actor_id}")
        assert fetched.status_code == 200
        assert fetched.json()["role"] == "oracle"

    def test_unknown_actor_is_404(self, client):
        response = client.get("/admin/actors/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ActorNotFound"

    def test_thresholds_roundtrip(self, client, configured):
        assert configured["version"] == 1

        response = client.get("/admin/thresholds/default")
        assert response.json()["min_submissions"] == 3

    def test_non_admin_is_403(self, client, user):
        response = client.post("/admin/pause", json=auth(user))

        assert response.status_code == 403
        assert response.json()["detail"]["category"] == "authorization"

    def test_pause_and_unpause(self, client, admin, user):
        assert client.post("/admin/pause", json=auth(admin)).json() == {"paused": True}

        blocked = client.post("/claims", json={**auth(user), "policy_id": "POL-1", "amount": 10})
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["code"] == "Paused"

        assert client.post("/admin/unpause", json=auth(admin)).json() == {"paused": False}

    def test_oracle_gating_flag(self, client, admin):
        response = client.post("/admin/oracle-gating", json={**auth(admin), "enabled": False})
        assert response.json() == {"enabled": False}


class TestFactEndpoints:

    def submit(self, client, oracle, fact_id, value, **extra):
        return client.post(
            f"/facts/{fact_id}/submissions", json={**auth(oracle), "value": value, **extra}
        )

    def test_submission_flow(self, client, configured, oracles):
        first = self.submit(client, oracles[0], "fact-1", 500)
        assert first.status_code == 201
        assert first.json()["outcome"] == "pending"
        assert first.json()["reason"] == "insufficient_submissions"

        self.submit(client, oracles[1], "fact-1", 505)
        third = self.submit(client, oracles[2], "fact-1", 498)

        body = third.json()
        assert body["outcome"] == "resolved"
        assert body["result"]["consensus_value"] == 500
        assert body["result"]["rejected_count"] == 0

        fact = client.get("/facts/fact-1").json()
        assert fact["finalized"] is True
        assert fact["submission_count"] == 3

        submissions = client.get("/facts/fact-1/submissions").json()
        assert [s["value"] for s in submissions] == [500, 505, 498]

    def test_rejected_outcome_is_not_an_error(self, client, configured, oracles):
        for oracle, value in zip(oracles, [10, 100, 1000]):
            response = self.submit(client, oracle, "fact-1", value)

        assert response.status_code == 201
        assert response.json()["outcome"] == "rejected"
        assert response.json()["error_code"] == "ConsensusNotReached"

    def test_duplicate_submission_is_400(self, client, oracles):
        self.submit(client, oracles[0], "fact-1", 1)
        response = self.submit(client, oracles[0], "fact-1", 2)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "DuplicateSubmission"

    def test_finalized_fact_is_409(self, client, configured, oracles):
        for oracle in oracles[:3]:
            self.submit(client, oracle, "fact-1", 7)

        response = self.submit(client, oracles[3], "fact-1", 7)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "AlreadyFinalized"

    def test_unknown_fact_is_404(self, client):
        assert client.get("/facts/missing").status_code == 404
        assert client.get("/facts/missing/submissions").status_code == 404

    def test_resolve_on_demand(self, client, oracles):
        self.submit(client, oracles[0], "fact-1", 7)

        response = client.post("/facts/fact-1/resolve", json=auth(oracles[1]))

        assert response.status_code == 200
        assert response.json()["outcome"] == "pending"

    def test_result_pending_until_resolved(self, client, configured, oracles):
        assert client.get("/facts/fact-1/result").status_code == 404

        self.submit(client, oracles[0], "fact-1", 500)
        pending = client.get("/facts/fact-1/result")
        assert pending.status_code == 409
        assert pending.json()["detail"]["code"] == "Pending"
        assert pending.json()["detail"]["category"] == "consensus"

        self.submit(client, oracles[1], "fact-1", 500)
        self.submit(client, oracles[2], "fact-1", 500)
        resolved = client.get("/facts/fact-1/result")
        assert resolved.status_code == 200
        assert resolved.json()["consensus_value"] == 500

    def test_unknown_outcome_type_rejected(self):
        with pytest.raises(TypeError):
            OutcomeResponse.from_outcome(object())

    def test_stats(self, client, oracles):
        self.submit(client, oracles[0], "fact-1", 7)
        stats = client.get("/oracle/stats").json()
        assert stats["total_submissions"] == 1


class TestClaimEndpoints:

    def test_full_lifecycle(self, client, configured, oracles, user, processor, pool):
        created = client.post(
            "/claims",
            json={**auth(user), "policy_id": "POL-1", "amount": 500, "fact_id": "fact-1"},
        )
        assert created.status_code == 201
        claim_id = created.json()["claim_id"]

        review = client.post(f"/claims/{claim_id}/review", json=auth(processor))
        assert review.json()["status"] == "under_review"

        gated = client.post(f"/claims/{claim_id}/approve", json=auth(processor))
        assert gated.status_code == 409
        assert gated.json()["detail"]["code"] == "FactNotResolved"

        for oracle, value in zip(oracles, [500, 505, 498]):
            client.post("/facts/fact-1/submissions", json={**auth(oracle), "value": value})

        approved = client.post(f"/claims/{claim_id}/approve", json=auth(processor))
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        settled = client.post(f"/claims/{claim_id}/settle", json=auth(processor))
        assert settled.json()["status"] == "settled"
        assert pool.payout_calls == [(str(user.actor_id), 500)]

        again = client.post(f"/claims/{claim_id}/settle", json=auth(processor))
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "AlreadySettled"
        assert len(pool.payout_calls) == 1
        assert get_metrics().settlements == 1

    def test_payout_failure_is_502(self, client, admin, user, processor, pool):
        client.post("/admin/oracle-gating", json={**auth(admin), "enabled": False})
        claim_id = client.post(
            "/claims", json={**auth(user), "policy_id": "POL-1", "amount": 100}
        ).json()["claim_id"]
        client.post(f"/claims/{claim_id}/review", json=auth(processor))
        client.post(f"/claims/{claim_id}/approve", json=auth(processor))

        pool.fail_payouts = True
        response = client.post(f"/claims/{claim_id}/settle", json=auth(processor))

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "InsufficientBalance"
        assert client.get(f"/claims/{claim_id}").json()["status"] == "approved"

    def test_validation_errors(self, client, user):
        over = client.post("/claims", json={**auth(user), "policy_id": "POL-1", "amount": 5000})
        assert over.status_code == 400
        assert over.json()["detail"]["code"] == "CoverageExceeded"

        missing = client.post("/claims", json={**auth(user), "policy_id": "NOPE", "amount": 5})
        assert missing.status_code == 502
        assert missing.json()["detail"]["code"] == "PolicyNotFound"

    def test_unknown_claim_is_404(self, client):
        assert client.get("/claims/99").status_code == 404

    def test_list_claims(self, client, user, processor):
        for policy_id in ("POL-1", "POL-2"):
            client.post("/claims", json={**auth(user), "policy_id": policy_id, "amount": 10})
        client.post("/claims/2/review", json=auth(processor))

        everything = client.get("/claims").json()
        assert everything["total_count"] == 2

        reviewing = client.get("/claims", params={"status": "under_review"}).json()
        assert [c["claim_id"] for c in reviewing["claims"]] == [2]

        assert client.get("/claims", params={"start": -1}).status_code == 422
