"""
In-memory, single-flight job trackers.

A tracker owns exactly one current run. ``start`` refuses to begin a second
run while one is ``running``; the long-running work polls
``is_cancel_requested`` between units of work and ends the run with exactly
one of ``complete``, ``cancelled`` or ``error``. Progress updates that arrive
after a run has terminated are ignored.

Terminal runs are snapshotted into a bounded, newest-first history and the
tracker reverts to ``idle`` after a grace window via a cancellable scheduled
callback. The revert is housekeeping only: ``start`` never waits for it.
"""
from __future__ import annotations

import datetime as dt
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .logging_setup import get_logger, with_extras
from .runtime_config import RUNTIME_CONFIG

logger = get_logger(__name__)

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
ERROR = "error"
CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({COMPLETED, ERROR, CANCELLED})

KIND_FULL = "full"
KIND_INCREMENTAL = "incremental"
SYNC_KINDS = frozenset({KIND_FULL, KIND_INCREMENTAL})

Clock = Callable[[], dt.datetime]
Scheduler = Callable[[float, Callable[[], None]], Any]


class AlreadyRunningError(RuntimeError):
    """Raised by ``start`` when a run is already in progress."""


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SyncRun:
    status: str = IDLE
    kind: Optional[str] = None
    phase: str = "Idle"
    counters: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    error: Optional[str] = None
    cancel_requested: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class SyncHistoryEntry:
    job: str
    kind: Optional[str]
    status: str
    phase: str
    counters: Tuple[Tuple[str, int], ...]
    start_time: Optional[dt.datetime]
    end_time: Optional[dt.datetime]
    error: Optional[str]
    cancel_requested: bool
    dry_run: bool

    @classmethod
    def from_run(cls, job: str, run: SyncRun) -> "SyncHistoryEntry":
        return cls(
            job=job,
            kind=run.kind,
            status=run.status,
            phase=run.phase,
            counters=tuple(run.counters.items()),
            start_time=run.start_time,
            end_time=run.end_time,
            error=run.error,
            cancel_requested=run.cancel_requested,
            dry_run=run.dry_run,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "job": self.job,
            "kind": self.kind,
            "status": self.status,
            "phase": self.phase,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "error": self.error,
            "cancel_requested": self.cancel_requested,
            "dry_run": self.dry_run,
        }
        out.update(dict(self.counters))
        return out


class JobTracker:
    job_name = "job"
    counter_names: Tuple[str, ...] = ("processed", "total")

    idle_phase = "Idle"
    start_phase = "Starting..."
    complete_phase = "Complete"
    failed_phase = "Failed"
    cancelled_phase = "Cancelled"
    cancelling_phase = "Cancelling..."

    def __init__(
        self,
        *,
        grace_seconds: Optional[float] = None,
        history_limit: Optional[int] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.grace_seconds = RUNTIME_CONFIG.sync.grace_seconds if grace_seconds is None else grace_seconds
        limit = RUNTIME_CONFIG.sync.history_limit if history_limit is None else history_limit
        self._clock = clock or _utcnow
        self._scheduler = scheduler or _timer_scheduler
        self._lock = threading.RLock()
        self._history: Deque[SyncHistoryEntry] = deque(maxlen=max(1, int(limit)))
        self._run = self._idle_run()
        self._generation = 0
        self._revert_handle: Any = None
        self.last_success_time: Optional[dt.datetime] = None

    def _idle_run(self) -> SyncRun:
        return SyncRun(phase=self.idle_phase, counters={name: 0 for name in self.counter_names})

    # --- queries ---
    def is_running(self) -> bool:
        return self._run.status == RUNNING

    @property
    def start_time(self) -> Optional[dt.datetime]:
        return self._run.start_time

    def is_cancel_requested(self) -> bool:
        run = self._run
        return run.status == RUNNING and run.cancel_requested

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            run = self._run
            out: Dict[str, Any] = {
                "status": run.status,
                "kind": run.kind,
                "phase": run.phase,
            }
            out.update(run.counters)
            out.update(
                {
                    "start_time": _iso(run.start_time),
                    "end_time": _iso(run.end_time),
                    "error": run.error,
                    "cancel_requested": run.cancel_requested,
                    "dry_run": run.dry_run,
                    "last_success_time": _iso(self.last_success_time),
                }
            )
            return out

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            entries = list(self._history)
        if limit is not None:
            entries = entries[: max(0, int(limit))]
        return [e.to_dict() for e in entries]

    # --- lifecycle ---
    def _begin(self, kind: Optional[str], dry_run: bool) -> None:
        with self._lock:
            if self._run.status == RUNNING:
                raise AlreadyRunningError(
                    f"{self.job_name} is already running. Please wait for it to complete."
                )
            self._cancel_revert()
            self._generation += 1
            self._run = SyncRun(
                status=RUNNING,
                kind=kind,
                phase=self.start_phase,
                counters={name: 0 for name in self.counter_names},
                start_time=self._clock(),
                dry_run=bool(dry_run),
            )
        with_extras(logger, job=self.job_name, kind=kind, dry_run=bool(dry_run)).info("job started")

    def request_cancel(self) -> bool:
        with self._lock:
            if self._run.status != RUNNING:
                return False
            self._run.cancel_requested = True
            self._run.phase = self.cancelling_phase
        with_extras(logger, job=self.job_name).info("cancellation requested")
        return True

    def update_phase(self, phase: str) -> None:
        with self._lock:
            if self._run.status == RUNNING:
                self._run.phase = phase

    def _update_counters(self, **values: int) -> None:
        with self._lock:
            if self._run.status != RUNNING:
                return
            counters = self._run.counters
            for name, value in values.items():
                # counters only move forward within a run
                counters[name] = max(counters.get(name, 0), int(value or 0))

    def complete(self) -> bool:
        with self._lock:
            if self._run.status != RUNNING:
                return False
            if self._run.cancel_requested:
                self._finish(CANCELLED, self.cancelled_phase)
                return True
            self._finish(COMPLETED, self.complete_phase)
            if not self._run.dry_run:
                # the next incremental window starts where this run started
                self.last_success_time = self._run.start_time
            return True

    def cancelled(self) -> bool:
        with self._lock:
            if self._run.status != RUNNING or not self._run.cancel_requested:
                return False
            self._finish(CANCELLED, self.cancelled_phase)
            return True

    def error(self, message: str) -> None:
        with self._lock:
            self._run.error = message or "Unknown error"
            self._finish(ERROR, self.failed_phase)

    def reset(self) -> None:
        with self._lock:
            self._cancel_revert()
            self._generation += 1
            self._run = self._idle_run()

    # --- internals ---
    def _finish(self, status: str, phase: str) -> None:
        run = self._run
        run.status = status
        run.phase = phase
        if run.end_time is None:
            run.end_time = self._clock()
        self._history.appendleft(SyncHistoryEntry.from_run(self.job_name, run))
        self._schedule_revert()
        with_extras(
            logger,
            job=self.job_name,
            status=status,
            error=run.error,
            dry_run=run.dry_run,
            **run.counters,
        ).info("job finished")

    def _schedule_revert(self) -> None:
        self._cancel_revert()
        generation = self._generation
        self._revert_handle = self._scheduler(self.grace_seconds, lambda: self._revert_to_idle(generation))

    def _cancel_revert(self) -> None:
        handle, self._revert_handle = self._revert_handle, None
        if handle is not None and hasattr(handle, "cancel"):
            handle.cancel()

    def _revert_to_idle(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._run.status not in TERMINAL_STATUSES:
                return
            self._revert_handle = None
            self._run = self._idle_run()


class SyncTracker(JobTracker):
    job_name = "sync"
    counter_names = ("processed", "total", "imported", "skipped", "approved", "pending")
    start_phase = "Starting sync..."
    complete_phase = "Sync complete"
    failed_phase = "Sync failed"
    cancelled_phase = "Sync cancelled"
    cancelling_phase = "Cancelling sync..."

    def start(self, kind: str, dry_run: bool = False) -> None:
        if kind not in SYNC_KINDS:
            raise ValueError(f"unknown sync kind: {kind!r}")
        self._begin(kind, dry_run)

    def update_progress(self, processed: int, total: int) -> None:
        self._update_counters(processed=processed, total=total)

    def update_stats(self, imported: int, skipped: int, approved: int, pending: int) -> None:
        self._update_counters(imported=imported, skipped=skipped, approved=approved, pending=pending)


class CitationTracker(JobTracker):
    job_name = "citations"
    counter_names = ("processed", "total", "updated")
    start_phase = "Fetching citation counts..."
    complete_phase = "Update complete"
    failed_phase = "Update failed"
    cancelled_phase = "Update cancelled"
    cancelling_phase = "Cancelling update..."

    def start(self, total: int, dry_run: bool = False) -> None:
        self._begin(KIND_FULL, dry_run)
        self._update_counters(total=total)

    def update_progress(self, processed: int, updated: int, total: Optional[int] = None) -> None:
        self._update_counters(processed=processed, updated=updated, total=total or 0)


class AbstractRefreshTracker(JobTracker):
    job_name = "abstracts"
    counter_names = ("processed", "total", "updated", "failed")
    start_phase = "Fetching abstracts..."
    complete_phase = "Refresh complete"
    failed_phase = "Refresh failed"
    cancelled_phase = "Refresh cancelled"
    cancelling_phase = "Cancelling refresh..."

    def start(self, total: int, dry_run: bool = False) -> None:
        self._begin(KIND_FULL, dry_run)
        self._update_counters(total=total)

    def update_progress(self, processed: int, updated: int, failed: int, total: Optional[int] = None) -> None:
        self._update_counters(processed=processed, updated=updated, failed=failed, total=total or 0)


# process-wide trackers used by the CLI and celery workers
sync_tracker = SyncTracker()
citation_tracker = CitationTracker()
abstract_refresh_tracker = AbstractRefreshTracker()
