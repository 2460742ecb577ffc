import datetime as dt
import itertools
import threading
import unittest

from pub_sync.sync_tracker import (
    AbstractRefreshTracker,
    AlreadyRunningError,
    CitationTracker,
    SyncTracker,
)


class _Handle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class ManualScheduler:
    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = _Handle(delay, callback)
        self.handles.append(handle)
        return handle


def _clock():
    ticks = itertools.count()
    base = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    return lambda: base + dt.timedelta(seconds=next(ticks))


def _tracker(**kwargs):
    scheduler = ManualScheduler()
    kwargs.setdefault("grace_seconds", 5)
    kwargs.setdefault("history_limit", 10)
    tracker = SyncTracker(clock=_clock(), scheduler=scheduler, **kwargs)
    return tracker, scheduler


class SyncTrackerLifecycleTests(unittest.TestCase):
    def test_start_initializes_fresh_run(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        status = tracker.get_status()
        self.assertEqual(status["status"], "running")
        self.assertEqual(status["kind"], "full")
        self.assertEqual(status["phase"], "Starting sync...")
        for key in ("processed", "total", "imported", "skipped", "approved", "pending"):
            self.assertEqual(status[key], 0)
        self.assertIsNotNone(status["start_time"])
        self.assertIsNone(status["end_time"])

    def test_second_start_while_running_is_rejected(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        with self.assertRaises(AlreadyRunningError):
            tracker.start("incremental")
        self.assertEqual(tracker.get_status()["kind"], "full")

    def test_unknown_kind_is_rejected(self) -> None:
        tracker, _ = _tracker()
        with self.assertRaises(ValueError):
            tracker.start("partial")
        self.assertFalse(tracker.is_running())

    def test_concurrent_starts_admit_exactly_one_run(self) -> None:
        tracker, _ = _tracker()
        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                tracker.start("full")
                ok = True
            except AlreadyRunningError:
                ok = False
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(results.count(True), 1)

    def test_complete_records_history_and_watermark(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        tracker.update_progress(3, 4)
        self.assertTrue(tracker.complete())
        status = tracker.get_status()
        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["phase"], "Sync complete")
        self.assertIsNotNone(status["last_success_time"])
        history = tracker.get_history()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["status"], "completed")
        self.assertEqual(history[0]["processed"], 3)

    def test_watermark_is_the_run_start_time(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        started = tracker.start_time
        tracker.complete()
        self.assertEqual(tracker.last_success_time, started)
        self.assertEqual(tracker.get_status()["last_success_time"], tracker.get_history()[0]["start_time"])
        self.assertNotEqual(tracker.get_history()[0]["start_time"], tracker.get_history()[0]["end_time"])

    def test_dry_run_does_not_advance_watermark(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full", dry_run=True)
        tracker.complete()
        self.assertIsNone(tracker.last_success_time)
        self.assertTrue(tracker.get_history()[0]["dry_run"])

    def test_counters_never_move_backwards(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        tracker.update_progress(5, 10)
        tracker.update_progress(2, 8)
        tracker.update_stats(imported=4, skipped=1, approved=3, pending=1)
        tracker.update_stats(imported=1, skipped=0, approved=0, pending=0)
        status = tracker.get_status()
        self.assertEqual((status["processed"], status["total"]), (5, 10))
        self.assertEqual((status["imported"], status["skipped"], status["approved"], status["pending"]), (4, 1, 3, 1))


class SyncTrackerCancellationTests(unittest.TestCase):
    def test_request_cancel_when_idle_returns_false(self) -> None:
        tracker, _ = _tracker()
        self.assertFalse(tracker.request_cancel())
        self.assertFalse(tracker.is_cancel_requested())

    def test_cancel_then_complete_ends_cancelled(self) -> None:
        tracker, _ = _tracker()
        tracker.start("incremental")
        self.assertTrue(tracker.request_cancel())
        self.assertTrue(tracker.is_cancel_requested())
        tracker.update_progress(1, 2)
        tracker.complete()
        status = tracker.get_status()
        self.assertEqual(status["status"], "cancelled")
        self.assertTrue(status["cancel_requested"])
        self.assertIsNone(status["last_success_time"])
        self.assertEqual(tracker.get_history()[0]["status"], "cancelled")

    def test_cancelled_requires_a_cancel_request(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        self.assertFalse(tracker.cancelled())
        self.assertEqual(tracker.get_status()["status"], "running")
        tracker.request_cancel()
        self.assertTrue(tracker.cancelled())
        self.assertEqual(tracker.get_status()["phase"], "Sync cancelled")

    def test_stale_updates_after_termination_are_ignored(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        tracker.update_progress(1, 5)
        tracker.request_cancel()
        tracker.cancelled()
        tracker.update_progress(5, 5)
        tracker.update_phase("late page arrived")
        tracker.update_stats(imported=9, skipped=0, approved=9, pending=0)
        status = tracker.get_status()
        self.assertEqual(status["processed"], 1)
        self.assertEqual(status["imported"], 0)
        self.assertEqual(status["phase"], "Sync cancelled")


class SyncTrackerErrorTests(unittest.TestCase):
    def test_error_while_running_keeps_message(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        tracker.error("PubMed unreachable")
        status = tracker.get_status()
        self.assertEqual(status["status"], "error")
        self.assertEqual(status["error"], "PubMed unreachable")
        self.assertEqual(status["phase"], "Sync failed")
        self.assertEqual(tracker.get_history()[0]["error"], "PubMed unreachable")

    def test_error_from_idle_is_recorded(self) -> None:
        tracker, _ = _tracker()
        tracker.error("config missing")
        self.assertEqual(tracker.get_status()["status"], "error")
        self.assertEqual(len(tracker.get_history()), 1)

    def test_error_after_complete_keeps_end_time(self) -> None:
        tracker, _ = _tracker()
        tracker.start("full")
        tracker.complete()
        end_time = tracker.get_status()["end_time"]
        tracker.error("post-run check failed")
        status = tracker.get_status()
        self.assertEqual(status["status"], "error")
        self.assertEqual(status["end_time"], end_time)
        self.assertEqual([h["status"] for h in tracker.get_history()], ["error", "completed"])


class SyncTrackerHistoryTests(unittest.TestCase):
    def test_history_is_bounded_and_newest_first(self) -> None:
        tracker, _ = _tracker(history_limit=3)
        outcomes = []
        for i in range(5):
            tracker.start("full")
            tracker.update_progress(i, i)
            if i % 2:
                tracker.error(f"boom {i}")
                outcomes.append("error")
            else:
                tracker.complete()
                outcomes.append("completed")
        history = tracker.get_history()
        self.assertEqual(len(history), 3)
        self.assertEqual([h["processed"] for h in history], [4, 3, 2])
        self.assertEqual([h["status"] for h in history], list(reversed(outcomes))[:3])

    def test_history_limit_argument(self) -> None:
        tracker, _ = _tracker()
        for _ in range(4):
            tracker.start("full")
            tracker.complete()
        self.assertEqual(len(tracker.get_history(limit=2)), 2)


class SyncTrackerAutoRevertTests(unittest.TestCase):
    def test_terminal_state_reverts_to_idle_after_grace(self) -> None:
        tracker, scheduler = _tracker(grace_seconds=7)
        tracker.start("full")
        tracker.complete()
        self.assertEqual(len(scheduler.handles), 1)
        self.assertEqual(scheduler.handles[0].delay, 7)
        scheduler.handles[0].fire()
        status = tracker.get_status()
        self.assertEqual(status["status"], "idle")
        self.assertIsNotNone(status["last_success_time"])
        self.assertEqual(len(tracker.get_history()), 1)

    def test_start_before_revert_fires_and_stale_revert_is_ignored(self) -> None:
        tracker, scheduler = _tracker()
        tracker.start("full")
        tracker.error("boom")
        stale = scheduler.handles[0]
        tracker.start("incremental")
        self.assertTrue(stale.cancelled)
        stale.cancelled = False
        stale.fire()
        status = tracker.get_status()
        self.assertEqual(status["status"], "running")
        self.assertEqual(status["kind"], "incremental")

    def test_reset_returns_to_idle(self) -> None:
        tracker, scheduler = _tracker()
        tracker.start("full")
        tracker.complete()
        tracker.reset()
        self.assertTrue(scheduler.handles[0].cancelled)
        self.assertEqual(tracker.get_status()["status"], "idle")


class SiblingTrackerTests(unittest.TestCase):
    def test_citation_tracker_counters(self) -> None:
        tracker = CitationTracker(clock=_clock(), scheduler=ManualScheduler())
        tracker.start(10)
        tracker.update_progress(4, 2)
        status = tracker.get_status()
        self.assertEqual((status["processed"], status["total"], status["updated"]), (4, 10, 2))
        self.assertNotIn("imported", status)
        with self.assertRaises(AlreadyRunningError):
            tracker.start(3)
        tracker.complete()
        self.assertEqual(tracker.get_status()["phase"], "Update complete")

    def test_abstract_tracker_counts_failures(self) -> None:
        tracker = AbstractRefreshTracker(clock=_clock(), scheduler=ManualScheduler())
        tracker.start(0)
        tracker.update_progress(3, 2, 1, total=3)
        tracker.request_cancel()
        tracker.cancelled()
        history = tracker.get_history()
        self.assertEqual(history[0]["job"], "abstracts")
        self.assertEqual(history[0]["failed"], 1)
        self.assertEqual(history[0]["total"], 3)


if __name__ == "__main__":
    unittest.main()
