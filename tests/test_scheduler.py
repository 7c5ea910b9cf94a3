import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

import feed_ingest.scheduler as scheduler_module
from feed_ingest import db
from feed_ingest.models import FetchOutcome, FetchStatus
from feed_ingest.scheduler import Scheduler


@pytest.fixture
def fetched(monkeypatch):
    """Replace the fetch executor with a recorder that always succeeds."""
    calls = []

    def fake_fetch_one(session_factory, feed_id, timeout=None):
        calls.append(feed_id)
        return FetchOutcome(feed_id, FetchStatus.SUCCESS)

    monkeypatch.setattr(scheduler_module, "fetch_one", fake_fetch_one)
    return calls


@pytest.fixture
def scheduler(session_factory):
    scheduler = Scheduler(session_factory, interval_minutes=60, max_workers=2)
    yield scheduler
    scheduler.shutdown()


def _feeds(session, count):
    return [
        db.create_feed(session, f"Feed {i}", f"https://feed-{i}.example.com", 60).id
        for i in range(count)
    ]


def test_run_due_fetches_only_due_feeds_in_id_order(scheduler, session, fetched):
    ids = _feeds(session, 3)
    now = datetime.now(timezone.utc)
    db.record_fetch_outcome(
        session, ids[1], FetchStatus.SUCCESS, fetched_at=now - timedelta(minutes=30)
    )
    db.record_fetch_outcome(
        session, ids[2], FetchStatus.ERROR, "boom", fetched_at=now - timedelta(minutes=61)
    )

    outcomes = scheduler.run_due()

    assert fetched == [ids[0], ids[2]]
    assert [outcome.feed_id for outcome in outcomes] == [ids[0], ids[2]]


def test_run_due_continues_after_failures(scheduler, session, monkeypatch):
    ids = _feeds(session, 3)
    seen = []

    def flaky_fetch_one(session_factory, feed_id, timeout=None):
        seen.append(feed_id)
        if feed_id == ids[0]:
            raise RuntimeError("unexpected")
        if feed_id == ids[1]:
            return FetchOutcome(feed_id, FetchStatus.ERROR, "feed status: 500")
        return FetchOutcome(feed_id, FetchStatus.SUCCESS)

    monkeypatch.setattr(scheduler_module, "fetch_one", flaky_fetch_one)

    outcomes = scheduler.run_due()

    assert seen == ids
    assert [outcome.status for outcome in outcomes] == [
        FetchStatus.ERROR,
        FetchStatus.SUCCESS,
    ]


def test_run_due_stops_before_next_feed_when_signalled(scheduler, session, monkeypatch):
    ids = _feeds(session, 3)
    stop_event = threading.Event()
    seen = []

    def fetch_then_stop(session_factory, feed_id, timeout=None):
        seen.append(feed_id)
        stop_event.set()
        return FetchOutcome(feed_id, FetchStatus.SUCCESS)

    monkeypatch.setattr(scheduler_module, "fetch_one", fetch_then_stop)

    scheduler.run_due(stop_event)

    assert seen == [ids[0]]


def test_run_executes_immediately_and_exits_on_stop(scheduler, session, monkeypatch):
    ids = _feeds(session, 1)
    stop_event = threading.Event()
    seen = []

    def fetch_and_record(session_factory, feed_id, timeout=None):
        seen.append(feed_id)
        return FetchOutcome(feed_id, FetchStatus.SUCCESS)

    monkeypatch.setattr(scheduler_module, "fetch_one", fetch_and_record)

    worker = threading.Thread(target=scheduler.run, args=(stop_event,))
    worker.start()
    deadline = datetime.now() + timedelta(seconds=5)
    while not seen and datetime.now() < deadline:
        threading.Event().wait(0.01)
    stop_event.set()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert seen == ids


def test_run_does_nothing_when_already_stopped(scheduler, session, fetched):
    _feeds(session, 1)
    stop_event = threading.Event()
    stop_event.set()

    scheduler.run(stop_event)

    assert fetched == []


def test_refresh_bypasses_due_check(scheduler, session, fetched):
    (feed_id,) = _feeds(session, 1)
    db.record_fetch_outcome(session, feed_id, FetchStatus.SUCCESS)

    outcome = scheduler.refresh(feed_id)

    assert outcome.ok
    assert fetched == [feed_id]


def test_refresh_all_fetches_every_feed(scheduler, session, fetched):
    ids = _feeds(session, 3)
    for feed_id in ids:
        db.record_fetch_outcome(session, feed_id, FetchStatus.SUCCESS)

    scheduler.refresh_all()

    assert fetched == ids


def test_trigger_runs_in_background(scheduler, session, fetched):
    (feed_id,) = _feeds(session, 1)

    future = scheduler.trigger(feed_id)

    assert future.result(timeout=5).feed_id == feed_id
    assert fetched == [feed_id]


def test_trigger_all_runs_in_background(scheduler, session, fetched):
    ids = _feeds(session, 2)

    outcomes = scheduler.trigger_all().result(timeout=5)

    assert [outcome.feed_id for outcome in outcomes] == ids


def test_interval_must_be_positive(session_factory):
    with pytest.raises(ValueError):
        Scheduler(session_factory, interval_minutes=0)


def test_end_to_end_recovery_after_transport_error(
    session_factory, session, monkeypatch, sample_json_feed
):
    import feed_ingest.fetcher as fetcher
    from feed_ingest.errors import TransportError

    (feed_id,) = _feeds(session, 1)
    scheduler = Scheduler(session_factory, interval_minutes=60)

    def unreachable(url, timeout=None):
        raise TransportError("connection timed out")

    monkeypatch.setattr(fetcher, "download_feed", unreachable)
    scheduler.run_due()
    failed = db.get_feed(session, feed_id)
    assert failed.last_status is FetchStatus.ERROR
    assert failed.last_error == "connection timed out"

    # make the feed due again
    db.record_fetch_outcome(
        session,
        feed_id,
        FetchStatus.ERROR,
        "connection timed out",
        fetched_at=datetime.now(timezone.utc) - timedelta(minutes=90),
    )
    monkeypatch.setattr(fetcher, "download_feed", lambda url, timeout=None: sample_json_feed)
    scheduler.run_due()
    scheduler.shutdown()

    recovered = db.get_feed(session, feed_id)
    assert recovered.last_status is FetchStatus.SUCCESS
    assert recovered.last_error is None
    assert recovered.last_fetched_at > failed.last_fetched_at
    assert db.count_items(session, feed_id) == 2


def test_run_waits_only_for_the_rest_of_the_interval(scheduler, monkeypatch):
    clock = iter([100.0, 112.5])
    monkeypatch.setattr(
        scheduler_module, "time", SimpleNamespace(monotonic=lambda: next(clock))
    )
    monkeypatch.setattr(scheduler, "run_due", lambda stop_event=None: [])
    waits = []

    class StopAfterFirstWait:
        def is_set(self):
            return bool(waits)

        def wait(self, timeout):
            waits.append(timeout)
            return True

    scheduler.run(StopAfterFirstWait())

    assert waits == [3600 - 12.5]
