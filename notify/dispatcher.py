"""
notify/dispatcher.py -- Fire-and-forget background job dispatch with retries.

Registration hands two jobs to the dispatcher ("user.registered" and
"verification_email") and returns immediately. A daemon worker thread
delivers them, so email latency or SMTP outages never reach the caller.

Queueing:
  ready    -- heap ordered by (priority, enqueue order). Priority 1 is high,
              2 medium, 3 low. Out-of-range values are clamped.
  delayed  -- heap ordered by due time; holds jobs waiting out a retry backoff.

Retries (at-least-once):
  A job whose handler raises is retried up to `tries` attempts in total, with
  linear backoff (backoff * attempt seconds). When the last attempt fails the
  job is logged at CRITICAL and reported to the monitoring sink. Nothing is
  ever raised back to the code that enqueued it.

Usage:
    dispatcher = NotificationDispatcher(monitor)
    dispatcher.subscribe("verification_email", sender.send_verification)
    dispatcher.start()
    dispatcher.enqueue("verification_email", {...}, priority=2)
    dispatcher.stop()

Layer rule: may import core/; no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from core.monitoring import Monitor

logger = logging.getLogger("authgate.notify")

Handler = Callable[[dict[str, Any]], None]

PRIORITY_HIGH = 1
PRIORITY_MEDIUM = 2
PRIORITY_LOW = 3


@dataclass
class Job:
    kind: str
    payload: dict[str, Any]
    priority: int = PRIORITY_MEDIUM
    attempts: int = 0
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class NotificationDispatcher:
    def __init__(
        self,
        monitor: Monitor,
        *,
        tries: int = 3,
        backoff: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.monitor = monitor
        self.tries = max(1, tries)
        self.backoff = backoff
        self._clock = clock
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._ready: list[tuple[int, int, Job]] = []
        self._delayed: list[tuple[float, int, Job]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None
        self._stopping = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, handler: Handler) -> None:
        self._handlers[kind].append(handler)

    def enqueue(self, kind: str, payload: dict[str, Any], priority: int = PRIORITY_MEDIUM) -> Job:
        """Submit a job and return immediately. Delivery happens on the worker."""
        job = Job(kind=kind, payload=dict(payload), priority=max(PRIORITY_HIGH, min(PRIORITY_LOW, priority)))
        with self._cond:
            heapq.heappush(self._ready, (job.priority, next(self._seq), job))
            self._cond.notify()
        logger.info("Job queued (kind=%s, job_id=%s, priority=%d)", kind, job.job_id, job.priority)
        return job

    def pending(self) -> int:
        with self._cond:
            return len(self._ready) + len(self._delayed)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def run_pending(self) -> int:
        """Process every job that is due now. Returns the number of attempts made."""
        processed = 0
        while True:
            job = self._next_due()
            if job is None:
                return processed
            self._process(job)
            processed += 1

    def _promote_due(self) -> None:
        # Caller must hold the lock.
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, seq, job = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (job.priority, seq, job))

    def _next_due(self) -> Job | None:
        with self._cond:
            self._promote_due()
            if not self._ready:
                return None
            return heapq.heappop(self._ready)[2]

    def _process(self, job: Job) -> None:
        job.attempts += 1
        handlers = self._handlers.get(job.kind)
        if not handlers:
            logger.warning("No handler subscribed for job kind %s; dropping job %s", job.kind, job.job_id)
            return
        try:
            for handler in handlers:
                handler(job.payload)
        except Exception as exc:  # noqa: BLE001 -- any handler failure is retried
            if job.attempts >= self.tries:
                self._failed(job, exc)
                return
            delay = self.backoff * job.attempts
            logger.warning(
                "Job failed (kind=%s, job_id=%s, attempt=%d, error=%s); retrying in %ds",
                job.kind,
                job.job_id,
                job.attempts,
                exc,
                delay,
            )
            with self._cond:
                heapq.heappush(self._delayed, (self._clock() + delay, next(self._seq), job))
                self._cond.notify()
            return
        logger.info("Job delivered (kind=%s, job_id=%s, attempt=%d)", job.kind, job.job_id, job.attempts)

    def _failed(self, job: Job, exc: Exception) -> None:
        logger.critical(
            "Job failed permanently (kind=%s, job_id=%s, attempts=%d, error=%s)",
            job.kind,
            job.job_id,
            job.attempts,
            exc,
        )
        self.monitor.report_exception(exc)
        self.monitor.report_event(
            "notification.failed",
            {"kind": job.kind, "job_id": job.job_id, "attempts": job.attempts, "user_id": job.payload.get("user_id")},
        )

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stopping = False
        self._thread = threading.Thread(target=self._worker, name="authgate-notify", daemon=True)
        self._thread.start()
        logger.info("Notification worker started")

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        self._thread.join(timeout)
        self._thread = None
        left = self.pending()
        if left:
            logger.warning("Notification worker stopped with %d undelivered job(s)", left)
        else:
            logger.info("Notification worker stopped")

    def _worker(self) -> None:
        while True:
            with self._cond:
                while not self._stopping:
                    self._promote_due()
                    if self._ready:
                        break
                    timeout = None
                    if self._delayed:
                        timeout = max(0.0, self._delayed[0][0] - self._clock())
                    self._cond.wait(timeout)
                if self._stopping:
                    return
            self.run_pending()
