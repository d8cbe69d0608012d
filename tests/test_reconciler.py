"""Reconciliation sweeps and the interval scheduler driving them."""
from datetime import timedelta

import pytest

from aftermeet.jobs import kinds
from aftermeet.models.db.enums import AccountProvider, JobState, MeetingStatus, PostStatus
from aftermeet.scheduler.locking import LocalSweepLock
from aftermeet.scheduler.reconciler import Reconciler
from aftermeet.scheduler.ticker import IntervalScheduler

BOT = "bot-lifecycle"


def test_meeting_starting_in_ten_minutes_is_immediately_eligible(reconciler, store, meeting_factory, clock):
    meeting = meeting_factory(start_time=clock() + timedelta(minutes=10))

    assert reconciler.schedule_upcoming_bots(clock()) == 1
    job = store.list_by_queue(BOT)[0]
    assert job.kind == kinds.CREATE_BOT
    assert job.state == JobState.WAITING
    assert job.run_at == meeting.start_time - timedelta(minutes=15)
    assert store.claim_next(BOT).id == job.id


def test_bot_scheduled_fifteen_minutes_ahead_within_lookahead(reconciler, store, meeting_factory, clock):
    soon = meeting_factory(start_time=clock() + timedelta(minutes=18))
    meeting_factory(start_time=clock() + timedelta(minutes=45))
    meeting_factory(start_time=clock() + timedelta(minutes=5), recall_enabled=False)
    meeting_factory(start_time=clock() + timedelta(minutes=5), bot_id="bot-1")
    meeting_factory(start_time=clock() - timedelta(minutes=5))

    assert reconciler.schedule_upcoming_bots(clock()) == 1
    (job,) = store.list_by_queue(BOT)
    assert job.payload["meeting_id"] == soon.id
    assert job.state == JobState.DELAYED
    assert job.run_at == clock() + timedelta(minutes=3)


def test_repeated_sweeps_do_not_duplicate_bot_jobs(reconciler, store, meeting_factory, clock):
    meeting_factory(start_time=clock() + timedelta(minutes=12))
    assert reconciler.schedule_upcoming_bots(clock()) == 1
    clock.advance(minutes=5)
    assert reconciler.schedule_upcoming_bots(clock()) == 0
    assert len(store.list_by_queue(BOT)) == 1


def test_prune_sweep_removes_jobs_finished_over_an_hour_ago(reconciler, store, clock):
    job = store.enqueue(BOT, kinds.SYNC_CALENDAR, {"user_id": "user-1"})
    store.claim_next(BOT)
    store.complete(job.id)

    assert reconciler.prune_finished_jobs(clock() + timedelta(minutes=30)) == 0
    assert reconciler.prune_finished_jobs(clock() + timedelta(minutes=61)) == 1
    assert reconciler.prune_finished_jobs(clock() + timedelta(minutes=61)) == 0


def test_cleanup_sweep_uses_thirty_day_cutoff(reconciler, store, clock):
    assert reconciler.schedule_cleanup(clock()) == 1
    (job,) = store.list_by_queue("cleanup")
    assert job.payload["resources"] == ["bots", "transcripts", "social-posts", "temp-files"]
    assert job.payload["older_than"].startswith((clock() - timedelta(days=30)).date().isoformat())
    # One cleanup pass at a time
    assert reconciler.schedule_cleanup(clock()) == 0


def test_retry_sweep_skips_publishing_jobs(reconciler, store):
    content = store.enqueue("content-generation", kinds.GENERATE_CONTENT, {"meeting_id": 1}, max_attempts=1)
    store.claim_next("content-generation")
    store.fail(content.id, "openai 500")
    post = store.enqueue("social-publishing", kinds.POST_CONTENT, {"social_post_id": 1}, max_attempts=1)
    store.claim_next("social-publishing")
    store.fail(post.id, "facebook 503")

    assert reconciler.retry_failed_jobs(store.now()) == 1
    assert store.summarize("content-generation")["waiting"] == 1
    assert store.summarize("social-publishing")["waiting"] == 0


def test_content_triggers(reconciler, store, meeting_factory, post_factory, clock, transcript):
    ended = meeting_factory(
        start_time=clock() - timedelta(hours=2), status=MeetingStatus.IN_PROGRESS, bot_id="bot-1"
    )
    meeting_factory(
        start_time=clock() - timedelta(minutes=10), status=MeetingStatus.IN_PROGRESS, bot_id="bot-2"
    )
    transcribed = meeting_factory(
        start_time=clock() - timedelta(days=1), status=MeetingStatus.COMPLETED, transcript=transcript
    )
    drafted = meeting_factory(
        start_time=clock() - timedelta(days=1), status=MeetingStatus.COMPLETED, transcript=transcript
    )
    due = post_factory(drafted.id, approved_at=clock() - timedelta(hours=1), scheduled_time=clock() - timedelta(minutes=1))
    post_factory(drafted.id, approved_at=clock(), scheduled_time=clock() + timedelta(hours=1))
    post_factory(drafted.id, scheduled_time=clock() - timedelta(minutes=1))
    post_factory(drafted.id, status=PostStatus.POSTED, approved_at=clock(), scheduled_time=clock())

    assert reconciler.check_content_triggers(clock()) == 3

    (fetch,) = store.list_by_queue(BOT)
    assert fetch.kind == kinds.FETCH_TRANSCRIPT
    assert fetch.payload == {"meeting_id": ended.id}
    assert fetch.max_attempts == 5
    (generate,) = store.list_by_queue("content-generation")
    assert generate.payload["meeting_id"] == transcribed.id
    (publish,) = store.list_by_queue("social-publishing")
    assert publish.payload["social_post_id"] == due.id

    assert reconciler.check_content_triggers(clock()) == 0


def test_calendar_sweep_targets_users_with_google_accounts(reconciler, store, account_factory):
    account_factory(user_id="user-1", provider=AccountProvider.GOOGLE)
    account_factory(user_id="user-2", provider=AccountProvider.GOOGLE, access_token=None)
    account_factory(user_id="user-3", provider=AccountProvider.LINKEDIN)

    assert reconciler.sync_calendars(store.now()) == 1
    (job,) = store.list_by_queue(BOT)
    assert job.payload == {"user_id": "user-1"}


def test_sweep_skipped_while_lock_held(jobs_service, session_factory, meeting_factory, clock):
    lock = LocalSweepLock()
    reconciler = Reconciler(jobs_service, session_factory, lock=lock)
    meeting_factory(start_time=clock() + timedelta(minutes=10))

    token = lock.acquire("schedule_upcoming_bots")
    assert reconciler.schedule_upcoming_bots(clock()) is None
    lock.release("schedule_upcoming_bots", token)
    assert reconciler.schedule_upcoming_bots(clock()) == 1


def test_scheduler_runs_sweeps_at_their_cadence(reconciler, clock):
    scheduler = reconciler.build_scheduler(IntervalScheduler(tick_seconds=1, clock=clock))
    assert set(scheduler.task_names) == {
        "schedule_upcoming_bots",
        "prune_finished_jobs",
        "schedule_cleanup",
        "retry_failed_jobs",
        "requeue_stalled_jobs",
        "check_content_triggers",
        "sync_calendars",
    }
    start = clock()
    assert len(scheduler.tick(start)) == 7
    assert scheduler.tick(start + timedelta(minutes=1)) == []
    assert set(scheduler.tick(start + timedelta(minutes=5))) == {"schedule_upcoming_bots", "requeue_stalled_jobs"}
    ran = scheduler.tick(start + timedelta(minutes=15))
    assert set(ran) == {"schedule_upcoming_bots", "requeue_stalled_jobs", "check_content_triggers", "sync_calendars"}
    assert "retry_failed_jobs" in scheduler.tick(start + timedelta(minutes=30))
    assert "prune_finished_jobs" in scheduler.tick(start + timedelta(hours=1))
    assert "schedule_cleanup" in scheduler.tick(start + timedelta(days=1))
    assert scheduler.get_task("schedule_cleanup").runs == 2


def test_scheduler_survives_failing_task(clock):
    calls = []

    def broken(now):
        raise RuntimeError("database unavailable")

    scheduler = IntervalScheduler(tick_seconds=1, clock=clock)
    scheduler.register("broken", 60, broken)
    scheduler.register("healthy", 60, calls.append)
    assert scheduler.tick() == ["broken", "healthy"]
    assert calls == [clock()]
    with pytest.raises(ValueError):
        scheduler.register("never", 0, calls.append)


def test_crashed_worker_job_is_recovered_until_attempts_run_out(reconciler, jobs_service, store, clock):
    job = store.enqueue(BOT, kinds.CREATE_BOT, {"meeting_id": 7})

    for expected in (JobState.DELAYED, JobState.DELAYED, JobState.FAILED):
        clock.advance(seconds=30)
        assert store.claim_next(BOT).id == job.id
        # Worker dies here; nothing completes or fails the job
        clock.advance(minutes=5)
        assert reconciler.requeue_stalled_jobs(clock()) == 0
        clock.advance(minutes=6)
        assert reconciler.requeue_stalled_jobs(clock()) == 1
        assert store.get(job.id).state == expected

    assert store.get(job.id).attempts_made == 3
    rescheduled = jobs_service.schedule_meeting_bot(7, clock())
    assert rescheduled.id != job.id
