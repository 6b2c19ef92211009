import dataclasses
import threading

import pytest

from app.services.crawl.status import CrawlRun, IngestionStatusTracker, RunState


def test_initial_snapshot_is_idle():
    tracker = IngestionStatusTracker()
    assert tracker.snapshot().to_dict() == {"status": "idle", "progress": 0, "message": "", "result": None}
    assert not tracker.running


def test_try_start_is_single_flight():
    tracker = IngestionStatusTracker()
    started, snap = tracker.try_start()
    assert started and snap.state is RunState.RUNNING
    tracker.update(progress=40, message="[2/4] chairs")

    again, current = tracker.try_start()
    assert again is False
    assert current.to_dict()["status"] == "running"
    assert current.progress == 40


def test_update_is_ignored_outside_a_run():
    tracker = IngestionStatusTracker()
    tracker.update(progress=50, message="late")
    assert tracker.snapshot().progress == 0

    tracker.try_start()
    tracker.complete({"products": {"crawled": 1, "saved": 1}})
    tracker.update(progress=20, message="stale writer")
    snap = tracker.snapshot()
    assert snap.state is RunState.COMPLETED
    assert snap.progress == 100
    assert snap.result == {"products": {"crawled": 1, "saved": 1}}


def test_progress_is_clamped():
    tracker = IngestionStatusTracker()
    tracker.try_start()
    assert tracker.update(progress=150).progress == 100
    assert tracker.update(progress=-5).progress == 0


def test_failed_run_keeps_error_until_next_start():
    tracker = IngestionStatusTracker()
    tracker.try_start()
    tracker.fail("home page unreachable")
    snap = tracker.snapshot()
    assert snap.to_dict()["status"] == "error"
    assert snap.result == {"error": "home page unreachable"}

    started, fresh = tracker.try_start()
    assert started
    assert fresh.result is None


def test_snapshots_are_immutable():
    run = CrawlRun()
    with pytest.raises(dataclasses.FrozenInstanceError):
        run.progress = 10


def test_concurrent_starts_admit_exactly_one():
    tracker = IngestionStatusTracker()
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(tracker.try_start()[0])

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(True) == 1
