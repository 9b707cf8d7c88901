"""Per-tick fan-out.

Inside a tick, rides are handed to a shared thread pool and processed
independently; the tick waits at most ``tick_deadline_seconds`` for them.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

from ridedispatch.config import settings

logger = logging.getLogger(__name__)

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=settings.worker_threads,
                                           thread_name_prefix="ride-worker")
        return _executor


def run_isolated(items: Iterable, handler: Callable, label: str,
                 deadline: Optional[float] = None) -> dict:
    """
    Run ``handler(item)`` for every item in parallel. A failing item is logged
    and counted; it never affects its siblings.
    Returns counts of ok / failed / timed_out items.
    """
    items = list(items)
    stats = {"ok": 0, "failed": 0, "timed_out": 0}
    if not items:
        return stats

    executor = get_executor()
    futures = {executor.submit(handler, item): item for item in items}
    done, not_done = wait(futures, timeout=deadline or settings.tick_deadline_seconds)

    for future in done:
        error = future.exception()
        if error is None:
            stats["ok"] += 1
        else:
            stats["failed"] += 1
            logger.error("%s: failed to process %s", label, _describe(futures[future]),
                         exc_info=error)
    for future in not_done:
        stats["timed_out"] += 1
        logger.warning("%s: %s still running at the tick deadline", label, _describe(futures[future]))
    return stats


def _describe(item) -> str:
    return f"ride {item.id}" if hasattr(item, "id") else repr(item)
