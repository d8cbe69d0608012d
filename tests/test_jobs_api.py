"""Jobs administration API: inspection, scheduling and error mapping."""
from datetime import timedelta

from fastapi.testclient import TestClient

from aftermeet.jobs import kinds
from aftermeet.main import app

API = "/api/v1/jobs"


def test_all_queue_statuses(client, jobs_service):
    jobs_service.schedule_calendar_sync("user-1")
    r = client.get(f"{API}/queues")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    queues = {q["name"]: q for q in body["data"]["queues"]}
    assert set(queues) == {"bot-lifecycle", "content-generation", "social-publishing", "cleanup"}
    assert queues["bot-lifecycle"]["waiting"] == 1
    assert queues["cleanup"]["paused"] is False


def test_unknown_queue_is_404(client):
    r = client.get(f"{API}/queues/meeting-bot")
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert "meeting-bot" in body["message"]
    assert body["request_id"]


def test_list_jobs_with_state_filter(client, store):
    store.enqueue("bot-lifecycle", kinds.SYNC_CALENDAR, {"user_id": "user-1"})
    store.enqueue("bot-lifecycle", kinds.SYNC_CALENDAR, {"user_id": "user-2"}, delay=300)

    r = client.get(f"{API}/queues/bot-lifecycle/jobs", params={"states": "waiting,delayed"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["queue"] == "bot-lifecycle"
    assert [j["state"] for j in data["jobs"]] == ["waiting", "delayed"]

    r = client.get(f"{API}/queues/bot-lifecycle/jobs", params={"states": "delayed"})
    assert [j["payload"]["user_id"] for j in r.json()["data"]["jobs"]] == ["user-2"]

    r = client.get(f"{API}/queues/bot-lifecycle/jobs", params={"states": "sleeping"})
    assert r.status_code == 422


def test_pause_and_resume(client, store):
    r = client.put(f"{API}/queues/cleanup/pause")
    assert r.status_code == 200
    assert store.is_paused("cleanup") is True
    assert client.get(f"{API}/queues/cleanup").json()["data"]["paused"] is True

    r = client.put(f"{API}/queues/cleanup/resume")
    assert r.status_code == 200
    assert store.is_paused("cleanup") is False


def test_clean_queue_respects_grace(client, store, clock):
    job = store.enqueue("bot-lifecycle", kinds.SYNC_CALENDAR, {"user_id": "user-1"})
    store.claim_next("bot-lifecycle")
    store.complete(job.id)

    assert client.delete(f"{API}/queues/bot-lifecycle/clean").json()["data"]["removed"] == 0
    clock.advance(10)
    assert client.delete(f"{API}/queues/bot-lifecycle/clean").json()["data"]["removed"] == 1


def test_schedule_and_cancel_meeting_bot(client, store, clock):
    scheduled = clock() + timedelta(minutes=30)
    r = client.post(f"{API}/meeting-bot/12", json={"scheduled_time": scheduled.isoformat()})
    assert r.status_code == 201, r.text
    job = r.json()["data"]
    assert job["kind"] == "create-bot"
    assert job["state"] == "delayed"
    assert job["payload"]["meeting_id"] == 12

    duplicate = client.post(f"{API}/meeting-bot/12", json={"scheduled_time": scheduled.isoformat()})
    assert duplicate.status_code == 409

    r = client.delete(f"{API}/meeting-bot/12")
    assert r.json()["data"] == {"cancelled": True}
    r = client.delete(f"{API}/meeting-bot/12")
    assert r.json()["success"] is False
    assert r.json()["data"] == {"cancelled": False}


def test_cancel_active_bot_job_returns_false(client, store, clock):
    client.post(f"{API}/meeting-bot/5", json={"scheduled_time": clock().isoformat()})
    store.claim_next("bot-lifecycle")
    r = client.delete(f"{API}/meeting-bot/5")
    assert r.json()["data"] == {"cancelled": False}


def test_schedule_content_generation(client):
    r = client.post(f"{API}/content-generation", json={"meeting_id": 3, "platforms": ["linkedin"], "tone": "casual"})
    assert r.status_code == 201
    payload = r.json()["data"]["payload"]
    assert payload == {"meeting_id": 3, "platforms": ["linkedin"], "tone": "casual"}

    bad = client.post(f"{API}/content-generation", json={"meeting_id": 3, "platforms": ["myspace"]})
    assert bad.status_code == 422
    assert bad.json()["success"] is False


def test_schedule_social_post_now_or_later(client, clock):
    r = client.post(f"{API}/social-posting/8")
    assert r.status_code == 201
    assert r.json()["data"]["state"] == "waiting"

    later = (clock() + timedelta(hours=2)).isoformat()
    r = client.post(f"{API}/social-posting/9", json={"scheduled_time": later})
    assert r.json()["data"]["state"] == "delayed"

    assert client.delete(f"{API}/social-posting/9").json()["data"] == {"cancelled": True}


def test_schedule_cleanup(client):
    r = client.post(f"{API}/cleanup", json={"older_than_days": 7, "resources": ["temp-files"]})
    assert r.status_code == 201
    assert r.json()["data"]["payload"]["resources"] == ["temp-files"]


def test_generic_job_creation(client):
    r = client.post(
        f"{API}/bot-lifecycle",
        json={"kind": "stop-bot", "payload": {"meeting_id": 4}, "max_attempts": 5, "backoff": {"strategy": "fixed", "delay_seconds": 30}},
    )
    assert r.status_code == 201, r.text
    job = r.json()["data"]
    assert job["max_attempts"] == 5
    assert job["backoff"] == {"strategy": "fixed", "delay_seconds": 30.0}

    assert client.post(f"{API}/bot-lifecycle", json={"kind": "launch", "payload": {}}).status_code == 422
    assert client.post(f"{API}/unknown-queue", json={"kind": "stop-bot", "payload": {"meeting_id": 4}}).status_code == 404


def test_retry_failed_endpoint(client, store):
    job = store.enqueue("content-generation", kinds.GENERATE_CONTENT, {"meeting_id": 1}, max_attempts=1)
    store.claim_next("content-generation")
    store.fail(job.id, "openai 500")
    r = client.post(f"{API}/queues/content-generation/retry-failed")
    assert r.json()["data"] == {"retried": 1}


def test_service_unavailable_before_startup():
    app.state.jobs_service = None  # type: ignore[attr-defined]
    r = TestClient(app).get(f"{API}/queues")
    assert r.status_code == 503
    assert r.json()["message"] == "Job queues not available"


def test_request_id_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-123"
