"""
HTTP surface tests against in-memory fakes (no Redis or Postgres).
"""

import pytest
from fastapi.testclient import TestClient

from app.jobs.feedback_worker import FeedbackWorker
from app.main import app
from app.services.analytics_service import AnalyticsService
from app.services.classifier import HeuristicClassifier
from app.services.feedback_service import FeedbackService
from app.services.metrics_sync_service import MetricsSynchronizer
from app.services.presence_service import PresenceService
from app.services.rating_service import RatingService


@pytest.fixture
def wired(queue, results, statuses, users, metrics):
    users.add_user("user-123", verified=True)
    presence = PresenceService(users, staleness_s=120)
    app.state.metrics = metrics
    app.state.user_repository = users
    app.state.presence_service = presence
    app.state.feedback_service = FeedbackService(queue, results, statuses, metrics, max_length=200)
    app.state.analytics_service = AnalyticsService(results, top_k=5, window_days=7)
    app.state.rating_service = RatingService(metrics, users)
    app.state.metrics_synchronizer = MetricsSynchronizer(metrics, presence, results, users)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(wired):
    return TestClient(wired)


@pytest.fixture
def worker(queue, results, statuses, metrics):
    return FeedbackWorker(
        queue,
        results,
        statuses,
        HeuristicClassifier(),
        metrics,
        concurrency=1,
        retry_base_delay=0,
        poll_timeout=0,
    )


def _auth(make_token, role="member", sub="user-123"):
    return {"Authorization": f"Bearer {make_token(sub=sub, role=role)}"}


@pytest.mark.asyncio
async def test_submit_poll_complete_flow(client, make_token, queue, worker):
    headers = _auth(make_token)

    response = client.post("/feedback/submit", json={"text": "Great service!"}, headers=headers)
    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "queued"
    job_id = body["job_id"]

    polled = client.get(f"/feedback/result/{job_id}", headers=headers).json()
    assert polled["status"] == "queued"

    await worker.process(await queue.reserve(timeout=0))

    polled = client.get(f"/feedback/result/{job_id}", headers=headers).json()
    assert polled["status"] == "completed"
    assert polled["result"]["sentiment"] == "positive"
    assert polled["result"]["confidence"] >= 0.5
    assert polled["result"]["confidence_percent"] == "60.0%"


def test_submit_validation_errors(client, make_token):
    headers = _auth(make_token)

    assert client.post("/feedback/submit", json={"text": ""}, headers=headers).status_code == 422
    assert client.post("/feedback/submit", json={"text": "   "}, headers=headers).status_code == 400
    assert client.post("/feedback/submit", json={"text": "x" * 201}, headers=headers).status_code == 400


def test_submit_returns_503_when_queue_is_down(client, make_token, fake_redis):
    fake_redis.available = False

    response = client.post("/feedback/submit", json={"text": "Great service!"}, headers=_auth(make_token))

    assert response.status_code == 503
    assert response.headers["Retry-After"]


def test_unknown_job_is_404(client, make_token):
    response = client.get("/feedback/result/does-not-exist", headers=_auth(make_token))

    assert response.status_code == 404


def test_other_users_job_is_404(client, make_token):
    job_id = client.post(
        "/feedback/submit", json={"text": "Great service!"}, headers=_auth(make_token)
    ).json()["job_id"]

    response = client.get(f"/feedback/result/{job_id}", headers=_auth(make_token, sub="intruder"))

    assert response.status_code == 404


def test_stats_zero_state(client, make_token):
    response = client.get("/feedback/stats", headers=_auth(make_token))

    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["total"] == 0
    assert stats["growth"]["total"] == 0.0
    assert stats["breakdown"]["positive"]["percentage"] == 0.0


@pytest.mark.asyncio
async def test_history_and_clear(client, make_token, queue, worker):
    headers = _auth(make_token)
    for text in ("Great service!", "Terrible delivery"):
        client.post("/feedback/submit", json={"text": text}, headers=headers)
        await worker.process(await queue.reserve(timeout=0))

    history = client.get("/feedback/history", params={"limit": 1}, headers=headers).json()
    assert history["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert len(history["feedback"]) == 1

    cleared = client.delete("/feedback/clear", headers=headers).json()
    assert cleared == {"success": True, "deleted": 2}


def test_heartbeat(client, make_token, users):
    response = client.post("/user/heartbeat", headers=_auth(make_token))

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert users.users["user-123"]["is_online"] is True

    assert client.post("/user/heartbeat", headers=_auth(make_token, sub="ghost")).status_code == 404


def test_rating_roundtrip(client, make_token):
    headers = _auth(make_token)

    assert client.get("/user/rating", headers=headers).json()["rating"] is None

    response = client.post("/user/rating", json={"rating": 4, "message": "Solid"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["rating"]["score"] == 4

    assert client.get("/user/rating", headers=headers).json()["rating"]["message"] == "Solid"
    assert client.post("/user/rating", json={"rating": 7}, headers=headers).status_code == 422


def test_admin_routes_require_admin_role(client, make_token):
    member = _auth(make_token)

    for path in ("/admin/stats", "/admin/feedback", "/admin/user-ratings"):
        assert client.get(path, headers=member).status_code == 403
        assert client.get(path).status_code in (401, 403)


def test_invalid_token_is_rejected(client):
    response = client.get("/feedback/stats", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_stats_and_feedback(client, make_token, queue, worker, users):
    headers = _auth(make_token)
    client.post("/feedback/submit", json={"text": "Great service!"}, headers=headers)
    await worker.process(await queue.reserve(timeout=0))
    client.post("/user/rating", json={"rating": 5}, headers=headers)

    admin = _auth(make_token, role="admin", sub="admin-1")

    stats = client.get("/admin/stats", headers=admin).json()
    assert stats["stats"]["scope"] == "system"
    assert stats["stats"]["total"] == 1
    assert stats["users"]["total"] == 1
    assert stats["queue"] == {"queued": 0, "inflight": 0}

    feedback = client.get("/admin/feedback", params={"sentiment": "positive"}, headers=admin).json()
    assert feedback["pagination"]["total"] == 1
    assert feedback["intent_stats"] == {"praise": 1, "support": 1}

    ratings = client.get("/admin/user-ratings", headers=admin).json()
    assert ratings["stats"]["average_rating"] == 5.0


def test_metrics_endpoint_exposes_counters_and_http_routes(client, make_token):
    client.post("/feedback/submit", json={"text": "Great service!"}, headers=_auth(make_token))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    text = response.text
    assert "feedback_submitted_total 1.0" in text
    assert 'route="/feedback/submit"' in text
    assert "feedback_total 0.0" in text


def test_metrics_endpoint_openmetrics(client):
    response = client.get("/metrics", headers={"Accept": "application/openmetrics-text"})

    assert response.headers["content-type"].startswith("application/openmetrics-text")
    assert response.text.rstrip().endswith("# EOF")
