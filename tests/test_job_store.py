"""Job store behaviour: enqueue, atomic claim, retries, administration."""
import threading
from datetime import timedelta

import pytest

from aftermeet.jobs import kinds
from aftermeet.jobs.errors import (
    DuplicateJobError,
    InvalidJobStateError,
    InvalidPayloadError,
    InvalidQueueError,
)
from aftermeet.models.db.enums import BackoffStrategy, JobState
from aftermeet.models.schemas.jobs import BackoffOptions

BOT = "bot-lifecycle"
CONTENT = "content-generation"
PUBLISH = "social-publishing"


def _create_bot(store, meeting_id=1, **kwargs):
    return store.enqueue(BOT, kinds.CREATE_BOT, {"meeting_id": meeting_id}, **kwargs)


def test_enqueue_applies_queue_defaults(store):
    job = _create_bot(store)
    assert job.state == JobState.WAITING
    assert job.attempts_made == 0
    assert job.max_attempts == 3
    assert job.backoff_strategy == BackoffStrategy.EXPONENTIAL
    assert job.backoff_delay == 5
    assert job.resource_key == "create-bot:meeting-1"
    assert job.payload["bot_config"]["record_video"] is True


def test_enqueue_with_delay_is_delayed_until_due(store, clock):
    job = _create_bot(store, delay=60)
    assert job.state == JobState.DELAYED
    assert store.claim_next(BOT) is None
    clock.advance(60)
    claimed = store.claim_next(BOT)
    assert claimed is not None and claimed.id == job.id
    assert claimed.state == JobState.ACTIVE


def test_run_at_in_past_is_immediately_eligible(store, clock):
    job = _create_bot(store, run_at=clock() - timedelta(minutes=5))
    assert job.state == JobState.WAITING
    assert store.claim_next(BOT).id == job.id


def test_enqueue_rejects_unknown_queue_and_bad_payload(store):
    with pytest.raises(InvalidQueueError):
        store.enqueue("meeting-bot", kinds.CREATE_BOT, {"meeting_id": 1})
    with pytest.raises(InvalidPayloadError):
        store.enqueue(BOT, kinds.CREATE_BOT, {"meeting": 1})
    with pytest.raises(InvalidPayloadError):
        store.enqueue(BOT, "launch-rocket", {"meeting_id": 1})
    with pytest.raises(InvalidPayloadError):
        _create_bot(store, max_attempts=0)
    assert store.list_by_queue(BOT) == []


def test_duplicate_active_job_rejected(store):
    _create_bot(store, meeting_id=7)
    with pytest.raises(DuplicateJobError):
        _create_bot(store, meeting_id=7)
    # A different kind for the same meeting is a different resource key
    store.enqueue(BOT, kinds.STOP_BOT, {"meeting_id": 7})
    assert len(store.list_by_queue(BOT)) == 2


def test_resource_is_free_again_after_terminal_state(store):
    job = _create_bot(store, meeting_id=3)
    store.claim_next(BOT)
    store.complete(job.id)
    again = _create_bot(store, meeting_id=3)
    assert again.id != job.id


def test_claim_is_fifo_by_run_at(store, clock):
    later = _create_bot(store, meeting_id=1, run_at=clock() - timedelta(seconds=10))
    earlier = _create_bot(store, meeting_id=2, run_at=clock() - timedelta(seconds=20))
    assert store.claim_next(BOT).id == earlier.id
    assert store.claim_next(BOT).id == later.id
    assert store.claim_next(BOT) is None


def test_complete_records_result_and_ignores_progress_regression(store):
    job = _create_bot(store)
    store.claim_next(BOT)
    store.report_progress(job.id, 60)
    store.report_progress(job.id, 30)
    assert store.get(job.id).progress == 60
    done = store.complete(job.id, {"bot_id": "bot-9"})
    assert done.state == JobState.COMPLETED
    assert done.result == {"bot_id": "bot-9"}
    assert done.finished_at is not None
    with pytest.raises(InvalidJobStateError):
        store.complete(job.id)


def test_retryable_failure_uses_exponential_backoff(store, clock):
    job = _create_bot(store)
    start = clock()
    store.claim_next(BOT)
    first = store.fail(job.id, "recall 503")
    assert first.state == JobState.DELAYED
    assert first.attempts_made == 1
    assert first.run_at == start + timedelta(seconds=5)

    clock.advance(5)
    store.claim_next(BOT)
    second = store.fail(job.id, "recall 503")
    assert second.attempts_made == 2
    assert second.run_at == clock() + timedelta(seconds=10)

    clock.advance(10)
    store.claim_next(BOT)
    final = store.fail(job.id, "recall 503")
    assert final.state == JobState.FAILED
    assert final.attempts_made == final.max_attempts == 3
    assert final.permanent_failure is False
    assert final.failure_reason == "recall 503"


def test_non_retryable_failure_is_terminal_immediately(store):
    job = _create_bot(store)
    store.claim_next(BOT)
    failed = store.fail(job.id, "meeting already started", retryable=False)
    assert failed.state == JobState.FAILED
    assert failed.attempts_made == 1
    assert failed.permanent_failure is True


def test_attempts_never_exceed_max(store, clock):
    job = store.enqueue(
        CONTENT,
        kinds.GENERATE_CONTENT,
        {"meeting_id": 1},
        backoff=BackoffOptions(strategy=BackoffStrategy.FIXED, delay_seconds=1),
    )
    for _ in range(10):
        claimed = store.claim_next(CONTENT)
        if claimed is None:
            clock.advance(1)
            continue
        record = store.fail(claimed.id, "boom")
        assert record.attempts_made <= record.max_attempts
    final = store.get(job.id)
    assert final.state == JobState.FAILED
    assert final.attempts_made == final.max_attempts == 2


def test_fail_requires_active_job(store):
    job = _create_bot(store)
    with pytest.raises(InvalidJobStateError):
        store.fail(job.id, "not claimed yet")


def test_stalled_job_is_requeued_with_backoff(store, clock):
    job = _create_bot(store)
    store.claim_next(BOT)
    assert store.requeue_stalled(BOT, clock() - timedelta(minutes=10)) == 0

    clock.advance(minutes=11)
    assert store.requeue_stalled(BOT, clock() - timedelta(minutes=10)) == 1
    stalled = store.get(job.id)
    assert stalled.state == JobState.DELAYED
    assert stalled.attempts_made == 1
    assert stalled.run_at == clock() + timedelta(seconds=5)
    assert stalled.failure_reason.startswith("Job stalled")
    assert store.requeue_stalled(BOT, clock()) == 0

    # The worker that lost the job can no longer settle it
    with pytest.raises(InvalidJobStateError):
        store.complete(job.id)
    clock.advance(5)
    assert store.claim_next(BOT).id == job.id


def test_stalled_job_on_last_attempt_fails_and_frees_resource(store, clock):
    job = _create_bot(store, max_attempts=1)
    store.claim_next(BOT)
    clock.advance(minutes=11)
    assert store.requeue_stalled(BOT, clock() - timedelta(minutes=10)) == 1

    failed = store.get(job.id)
    assert failed.state == JobState.FAILED
    assert failed.permanent_failure is False
    assert failed.finished_at == clock()
    assert _create_bot(store).state == JobState.WAITING


def test_cancel_removes_only_pending_jobs(store):
    waiting = _create_bot(store, meeting_id=1)
    assert store.cancel(BOT, lambda j: j.payload["meeting_id"] == 1) is True
    assert store.list_by_queue(BOT) == []

    active = _create_bot(store, meeting_id=2)
    store.claim_next(BOT)
    assert store.cancel(BOT, lambda j: j.id == active.id) is False
    assert store.get(active.id).state == JobState.ACTIVE
    assert waiting.id != active.id


def test_prune_is_idempotent(store, clock):
    done = _create_bot(store, meeting_id=1)
    store.claim_next(BOT)
    store.complete(done.id)
    pending = _create_bot(store, meeting_id=2)
    clock.advance(hours=2)

    cutoff = clock() - timedelta(hours=1)
    assert store.prune(BOT, cutoff) == 1
    assert store.prune(BOT, cutoff) == 0
    assert [j.id for j in store.list_by_queue(BOT)] == [pending.id]


def test_pause_blocks_claims_until_resume(store):
    job = _create_bot(store)
    store.pause(BOT)
    assert store.is_paused(BOT) is True
    assert store.claim_next(BOT) is None
    assert store.summarize(BOT)["paused"] is True
    store.resume(BOT)
    assert store.claim_next(BOT).id == job.id


def test_summarize_and_list_by_state(store, clock):
    _create_bot(store, meeting_id=1)
    _create_bot(store, meeting_id=2, delay=30)
    active = _create_bot(store, meeting_id=3, run_at=clock() - timedelta(seconds=1))
    assert store.claim_next(BOT).id == active.id

    summary = store.summarize(BOT)
    assert summary["name"] == BOT
    assert (summary["waiting"], summary["delayed"], summary["active"]) == (1, 1, 1)
    assert summary["completed"] == summary["failed"] == 0
    assert [j.id for j in store.list_by_queue(BOT, ["active"])] == [active.id]
    with pytest.raises(InvalidPayloadError):
        store.list_by_queue(BOT, ["sleeping"])


def test_concurrent_claims_return_distinct_jobs(store):
    for meeting_id in range(1, 21):
        _create_bot(store, meeting_id=meeting_id)

    claimed = []
    lock = threading.Lock()

    def worker():
        while True:
            job = store.claim_next(BOT)
            if job is None:
                return
            with lock:
                claimed.append(job.id)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(claimed) == 20
    assert len(set(claimed)) == 20


def test_retry_failed_resubmits_copy_once(store):
    job = store.enqueue(CONTENT, kinds.GENERATE_CONTENT, {"meeting_id": 5}, max_attempts=1)
    store.claim_next(CONTENT)
    store.fail(job.id, "openai 500")

    assert store.retry_failed(CONTENT) == 1
    assert store.retry_failed(CONTENT) == 0

    jobs = store.list_by_queue(CONTENT)
    original, copy = jobs
    assert original.state == JobState.FAILED
    assert original.resubmitted_at is not None
    assert copy.state == JobState.WAITING
    assert copy.retry_of == original.id
    assert copy.generation == 1
    assert copy.attempts_made == 0


def test_retry_failed_respects_generation_limit_and_exclusions(store):
    job = store.enqueue(CONTENT, kinds.GENERATE_CONTENT, {"meeting_id": 5}, max_attempts=1)
    for _ in range(3):
        store.claim_next(CONTENT)
        store.fail(store.list_by_queue(CONTENT, ["active"])[0].id, "openai 500")
        store.retry_failed(CONTENT, max_resubmits=2)
    generations = sorted(j.generation for j in store.list_by_queue(CONTENT))
    assert generations == [0, 1, 2]
    assert job.id in [j.id for j in store.list_by_queue(CONTENT, ["failed"])]

    post = store.enqueue(PUBLISH, kinds.POST_CONTENT, {"social_post_id": 9}, max_attempts=1)
    store.claim_next(PUBLISH)
    store.fail(post.id, "facebook 503")
    assert store.retry_failed(PUBLISH, exclude_kinds=[kinds.POST_CONTENT]) == 0


def test_retry_failed_skips_permanent_failures(store):
    job = _create_bot(store)
    store.claim_next(BOT)
    store.fail(job.id, "invalid meeting url", retryable=False)
    assert store.retry_failed(BOT) == 0


def test_retry_failed_marks_superseded_when_resource_busy(store):
    job = store.enqueue(CONTENT, kinds.GENERATE_CONTENT, {"meeting_id": 5}, max_attempts=1)
    store.claim_next(CONTENT)
    store.fail(job.id, "openai 500")
    newer = store.enqueue(CONTENT, kinds.GENERATE_CONTENT, {"meeting_id": 5})

    assert store.retry_failed(CONTENT) == 0
    assert store.get(job.id).resubmitted_at is not None
    assert [j.id for j in store.list_by_queue(CONTENT, ["waiting"])] == [newer.id]
