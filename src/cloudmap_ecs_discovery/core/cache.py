"""
Time-bounded cache of the latest discovery snapshot.

The cache bounds the AWS call rate: within the TTL every request is
served from memory, and concurrent requests during a miss share a single
pipeline run.
"""
import dataclasses
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .exceptions import DiscoveryTimeoutError, DiscoveryUnavailableError
from .logger import setup_logger
from .models import ScrapeTarget

logger = setup_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    targets: Tuple[ScrapeTarget, ...]
    computed_at: float
    ttl_seconds: int
    failure_count: int = 0
    stale: bool = False

    def is_valid(self, now: float) -> bool:
        return self.ttl_seconds > 0 and now - self.computed_at < self.ttl_seconds


class _InflightRun:
    """A refresh in progress and the callers waiting on it."""

    def __init__(self):
        self.future: Future = Future()
        self.cancel_event = threading.Event()
        self.waiters = 0


class ResultCache:
    """
    Single-writer cache in front of the discovery pipeline.

    Refreshes run on a dedicated worker thread; only that worker replaces
    the entry, under the lock, so readers always see a whole snapshot.

    Args:
        refresh: Runs the pipeline; receives the run's cancel event and
                 returns an object with ``targets`` and ``failure_count``
        ttl_seconds: Entry lifetime; 0 disables caching
        stale_grace_seconds: How long past expiry the last good entry may
                             still be served when a refresh fails (0 = never)
        clock: Monotonic time source
    """

    def __init__(
        self,
        refresh: Callable[[threading.Event], object],
        ttl_seconds: int,
        stale_grace_seconds: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._refresh_fn = refresh
        self.ttl_seconds = ttl_seconds
        self.stale_grace_seconds = stale_grace_seconds
        self._clock = clock

        self._lock = threading.Lock()
        self._entry: Optional[CacheEntry] = None
        self._last_good: Optional[CacheEntry] = None
        self._inflight: Optional[_InflightRun] = None
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="discovery-refresh")
        self.refresh_count = 0

    def peek(self) -> Optional[CacheEntry]:
        """Current entry without triggering a refresh (may be expired)."""
        with self._lock:
            return self._entry

    def get(self, force_refresh: bool = False, timeout: Optional[float] = None) -> CacheEntry:
        """
        Return a valid snapshot, refreshing it when needed.

        Args:
            force_refresh: Ignore a still valid entry
            timeout: Seconds to wait for a refresh; the refresh itself keeps
                     running for other waiters

        Returns:
            CacheEntry; ``stale`` is True when the last good entry is served
            because a refresh failed

        Raises:
            DiscoveryUnavailableError: If the refresh failed and no stale entry may be served
            DiscoveryTimeoutError: If ``timeout`` elapsed first
        """
        with self._lock:
            entry = self._entry
            if not force_refresh and entry is not None and entry.is_valid(self._clock()):
                return entry

            run = self._inflight
            if run is None:
                run = _InflightRun()
                self._inflight = run
                self._worker.submit(self._refresh, run)
                logger.debug("Cache refresh started", extra={"forced": force_refresh})
            run.waiters += 1

        try:
            entry = run.future.result(timeout=timeout)
        except FutureTimeoutError:
            self._give_up(run)
            raise DiscoveryTimeoutError(f"Discovery did not complete within {timeout} seconds")
        except DiscoveryUnavailableError:
            self._leave(run)
            stale = self._stale_entry()
            if stale is None:
                raise
            logger.warning(
                "Serving stale discovery results",
                extra={"age_seconds": round(self._clock() - stale.computed_at, 3)},
            )
            return stale
        except Exception:
            self._leave(run)
            raise

        self._leave(run)
        return entry

    def close(self) -> None:
        self._worker.shutdown(wait=False, cancel_futures=True)

    def _refresh(self, run: _InflightRun) -> None:
        try:
            result = self._refresh_fn(run.cancel_event)
        except Exception as e:
            with self._lock:
                if self._inflight is run:
                    self._inflight = None
            run.future.set_exception(e)
            return

        entry = CacheEntry(
            targets=tuple(result.targets),
            computed_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
            failure_count=result.failure_count,
        )
        with self._lock:
            self._last_good = entry
            if self.ttl_seconds > 0:
                self._entry = entry
            if self._inflight is run:
                self._inflight = None
            self.refresh_count += 1

        logger.info(
            "Discovery snapshot cached",
            extra={"stage": "Cached", "targets": len(entry.targets), "ttl_seconds": self.ttl_seconds},
        )
        run.future.set_result(entry)

    def _leave(self, run: _InflightRun) -> None:
        with self._lock:
            run.waiters -= 1

    def _give_up(self, run: _InflightRun) -> None:
        """A waiter timed out; cancel the run once nobody is left waiting."""
        with self._lock:
            run.waiters -= 1
            if run.waiters > 0 or run.future.done():
                return
            run.cancel_event.set()
            # New callers must not attach to a cancelled run
            if self._inflight is run:
                self._inflight = None
        logger.warning("All waiters gave up, cancelling discovery run")

    def _stale_entry(self) -> Optional[CacheEntry]:
        with self._lock:
            last = self._last_good
        if last is None or self.stale_grace_seconds <= 0:
            return None
        if self._clock() - last.computed_at >= self.ttl_seconds + self.stale_grace_seconds:
            return None
        return dataclasses.replace(last, stale=True)
