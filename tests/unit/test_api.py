"""HTTP tests for the voting API.

The application runs in-process over httpx's ASGI transport; the lifespan
is not started and the service dependencies are overridden with the
in-memory system from ``conftest.py``.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio
from prometheus_client import REGISTRY

from fakes import BrokenRedis
from voting_core.api.main import API_PREFIX, app, get_casting_service, get_results_aggregator
from voting_core.api.upstream import call_upstream
from voting_core.shared.errors import InternalFailure
from voting_core.storage.database import DatabaseError
from voting_core.storage.tally import TallyStore, TallyStoreError


@pytest_asyncio.fixture
async def api_client(system):
    """Async HTTP client bound to the app with in-memory services."""
    app.dependency_overrides[get_casting_service] = lambda: system.casting
    app.dependency_overrides[get_results_aggregator] = lambda: system.results
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
class TestCastEndpoint:

    async def test_cast_created(self, api_client, system):
        token = system.add_voter("v1")

        response = await api_client.post(
            f"{API_PREFIX}/votes/cast",
            json={"candidate_id": " cand-a "},
            headers={**bearer(token), "User-Agent": "pytest-client"}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["candidate_id"] == "cand-a"
        assert data["message"] == "Vote cast successfully"
        stored = await system.ledger.get_vote_by_id(data["vote_id"])
        assert stored.metadata.user_agent == "pytest-client"

    async def test_second_cast_conflict(self, api_client, system):
        token = system.add_voter("v1")
        await api_client.post(f"{API_PREFIX}/votes/cast", json={"candidate_id": "cand-a"},
                              headers=bearer(token))

        response = await api_client.post(f"{API_PREFIX}/votes/cast", json={"candidate_id": "cand-b"},
                                         headers=bearer(token))

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyVoted"
        assert response.json()["message"] == "You have already voted in this election."

    async def test_missing_token(self, api_client):
        response = await api_client.post(f"{API_PREFIX}/votes/cast", json={"candidate_id": "cand-a"})
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    async def test_candidate_role_forbidden(self, api_client):
        response = await api_client.post(f"{API_PREFIX}/votes/cast", json={"candidate_id": "cand-a"},
                                         headers=bearer("candidate-token"))
        assert response.status_code == 403

    async def test_unapproved_candidate(self, api_client, system):
        token = system.add_voter("v1")
        response = await api_client.post(f"{API_PREFIX}/votes/cast",
                                         json={"candidate_id": "cand-pending"},
                                         headers=bearer(token))
        assert response.status_code == 404
        assert response.json()["error"] == "CandidateNotFound"

    @pytest.mark.parametrize("payload", [{}, {"candidate_id": "   "}])
    async def test_invalid_body(self, api_client, system, payload):
        token = system.add_voter("v1")
        response = await api_client.post(f"{API_PREFIX}/votes/cast", json=payload,
                                          headers=bearer(token))
        assert response.status_code == 422

    async def test_upstream_timeout_sets_retry_after(self, api_client, system):
        token = system.add_voter("v1")

        async def slow_lookup(candidate_id):
            return await call_upstream(asyncio.sleep(5), 0.01, "candidate directory")

        system.directory.get_eligible = slow_lookup
        response = await api_client.post(f"{API_PREFIX}/votes/cast", json={"candidate_id": "cand-a"},
                                         headers=bearer(token))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"


@pytest.mark.asyncio
class TestReadEndpoints:

    async def test_results_shape(self, api_client, system):
        await system.casting.cast_vote(system.add_voter("v1"), "cand-b")

        response = await api_client.get(f"{API_PREFIX}/votes/results")

        assert response.status_code == 200
        data = response.json()
        assert data["election_id"] == "general-2024"
        assert data["total_votes"] == 1
        assert data["results"][0] == {
            "candidate_id": "cand-b",
            "name": "Ben Ortiz",
            "party": "Blue",
            "position": "Mayor",
            "vote_count": 1,
        }

    async def test_results_ledger_source(self, api_client):
        response = await api_client.get(f"{API_PREFIX}/votes/results", params={"source": "ledger"})
        assert response.status_code == 200

    async def test_results_bad_source(self, api_client):
        response = await api_client.get(f"{API_PREFIX}/votes/results", params={"source": "cache"})
        assert response.status_code == 422

    async def test_results_for_other_election_are_empty(self, api_client, system):
        await system.casting.cast_vote(system.add_voter("v1"), "cand-a")

        response = await api_client.get(f"{API_PREFIX}/votes/results",
                                        params={"election_id": "runoff-2025"})

        assert response.status_code == 200
        data = response.json()
        assert data["election_id"] == "runoff-2025"
        assert data["total_votes"] == 0
        assert [r["vote_count"] for r in data["results"]] == [0, 0]

    async def test_results_served_from_ledger_when_tally_down(self, api_client, system):
        await system.casting.cast_vote(system.add_voter("v1"), "cand-a")
        system.results.tally = TallyStore(BrokenRedis())

        response = await api_client.get(f"{API_PREFIX}/votes/results")

        assert response.status_code == 200
        assert response.json()["results"][0]["vote_count"] == 1

    @pytest.mark.parametrize("path", ["/votes/results?source=ledger", "/votes/stats"])
    async def test_ledger_outage_returns_error_body(self, api_client, system, path):
        system.ledger.read_failure = DatabaseError("connection reset")

        response = await api_client.get(f"{API_PREFIX}{path}")

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/json"
        assert response.json()["error"] == "InternalFailure"
        assert "Retry-After" not in response.headers

    async def test_unmapped_storage_error_returns_error_body(self, api_client, system):
        async def failing_stats(election_id):
            raise TallyStoreError("mget failed")

        system.results.get_stats = failing_stats

        response = await api_client.get(f"{API_PREFIX}/votes/stats")

        assert response.status_code == 500
        assert response.json() == {
            "error": "InternalFailure",
            "message": InternalFailure().message,
            "details": {},
        }

    async def test_has_voted_and_my_vote(self, api_client, system):
        token = system.add_voter("v1")

        before = await api_client.get(f"{API_PREFIX}/votes/has-voted", headers=bearer(token))
        missing = await api_client.get(f"{API_PREFIX}/votes/my-vote", headers=bearer(token))
        await system.casting.cast_vote(token, "cand-a")
        after = await api_client.get(f"{API_PREFIX}/votes/has-voted", headers=bearer(token))
        mine = await api_client.get(f"{API_PREFIX}/votes/my-vote", headers=bearer(token))

        assert before.json() == {"has_voted": False}
        assert missing.status_code == 404
        assert after.json() == {"has_voted": True}
        assert mine.json()["name"] == "Ada Park"

    async def test_stats(self, api_client, system):
        system.add_voter("v1")
        response = await api_client.get(f"{API_PREFIX}/votes/stats")
        assert response.status_code == 200
        assert response.json()["voter_turnout"] == "0.00%"


@pytest.mark.asyncio
class TestAdminEndpoints:

    async def test_dashboard(self, api_client):
        response = await api_client.get(f"{API_PREFIX}/admin/dashboard", headers=bearer("admin-token"))
        assert response.status_code == 200
        assert response.json()["recent_votes"] == 0

    async def test_dashboard_forbidden_for_voters(self, api_client, system):
        token = system.add_voter("v1")
        response = await api_client.get(f"{API_PREFIX}/admin/dashboard", headers=bearer(token))
        assert response.status_code == 403

    async def test_invalidate_and_reconcile(self, api_client, system):
        receipt = await system.casting.cast_vote(system.add_voter("v1"), "cand-a")

        response = await api_client.post(
            f"{API_PREFIX}/admin/votes/{receipt.vote_id}/invalidate",
            json={"reason": "duplicate registration"},
            headers=bearer("admin-token")
        )
        assert response.status_code == 200
        assert response.json()["is_valid"] is False
        assert await system.counter("cand-a") == 0

        response = await api_client.post(f"{API_PREFIX}/admin/tallies/reconcile",
                                         headers=bearer("admin-token"))
        assert response.status_code == 200
        assert response.json()["drifted"] == 0
        assert len(response.json()["candidates"]) == 4

    async def test_invalidate_unknown_vote(self, api_client):
        response = await api_client.post(
            f"{API_PREFIX}/admin/votes/not-a-vote/invalidate",
            json={"reason": "fraud"},
            headers=bearer("admin-token")
        )
        assert response.status_code == 404


@pytest.mark.asyncio
class TestServiceEndpoints:

    async def test_root(self, api_client):
        response = await api_client.get("/")
        assert response.json()["status"] == "running"

    async def test_health_without_backends(self, api_client):
        response = await api_client.get(f"{API_PREFIX}/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    async def test_metrics(self, api_client):
        response = await api_client.get("/metrics")
        assert response.status_code == 200
        assert "votes_cast_total" in response.text

    async def test_request_metrics_label_route_template(self, api_client):
        for vote_id in ("missing-1", "missing-2"):
            await api_client.post(
                f"{API_PREFIX}/admin/votes/{vote_id}/invalidate",
                json={"reason": "fraud"},
                headers=bearer("admin-token")
            )

        labels = {"method": "POST", "status": "404"}
        template = f"{API_PREFIX}/admin/votes/{{vote_id}}/invalidate"
        count = REGISTRY.get_sample_value(
            "http_request_duration_seconds_count", {**labels, "endpoint": template}
        )
        raw = REGISTRY.get_sample_value(
            "http_request_duration_seconds_count",
            {**labels, "endpoint": f"{API_PREFIX}/admin/votes/missing-1/invalidate"}
        )
        assert count >= 2
        assert raw is None
