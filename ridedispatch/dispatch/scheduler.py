"""Periodic jobs.

Each job runs on its own daemon thread and sleeps between ticks, so a job
never overlaps itself. Jobs keep no ride state between ticks; everything is
re-read from the store, which lets several instances run them side by side.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from ridedispatch.config import settings
from ridedispatch.dispatch import activator, reaper, waves

logger = logging.getLogger(__name__)


class PeriodicJob:
    def __init__(self, name: str, interval_seconds: float, func: Callable[[], object]):
        self.name = name
        self.interval = interval_seconds
        self.func = func
        self.runs = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_result = None
        self.last_duration: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tick_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Job %s started (every %ss)", self.name, self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        logger.info("Job %s stopped", self.name)

    def run_once(self):
        """Execute one tick now. Manual runs and the timer never overlap."""
        with self._tick_lock:
            started = time.monotonic()
            try:
                self.last_result = self.func()
                return self.last_result
            except Exception:
                self.failures += 1
                logger.exception("Job %s tick failed", self.name)
                return None
            finally:
                self.runs += 1
                self.last_run_at = datetime.now(timezone.utc)
                self.last_duration = round(time.monotonic() - started, 3)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def status(self) -> dict:
        return {
            "name": self.name,
            "interval_seconds": self.interval,
            "running": self.running,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_duration_seconds": self.last_duration,
            "last_result": self.last_result,
        }


class Scheduler:
    def __init__(self, jobs: Iterable[PeriodicJob] = ()):
        self.jobs: dict[str, PeriodicJob] = {job.name: job for job in jobs}

    def start(self) -> None:
        for job in self.jobs.values():
            job.start()

    def stop(self) -> None:
        for job in self.jobs.values():
            job.stop()

    def run(self, name: str):
        return self.jobs[name].run_once()

    def status(self) -> list[dict]:
        return [job.status() for job in self.jobs.values()]


def build_scheduler() -> Scheduler:
    return Scheduler([
        PeriodicJob("dispatch_waves", settings.wave_tick_seconds, waves.run_dispatch_waves),
        PeriodicJob("stale_rides", settings.stale_tick_seconds, reaper.expire_stale_rides),
        PeriodicJob("hoarded_rides", settings.hoarding_tick_seconds, reaper.reclaim_hoarded_rides),
        PeriodicJob("scheduled_rides", settings.activation_tick_seconds, activator.activate_scheduled_rides),
    ])


scheduler = build_scheduler()
