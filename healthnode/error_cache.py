"""Incremental, deduplicating cache of error blocks since the last activation.

Each service has one JSON file in the cache directory holding the activation
it was built against, a watermark (how far the journal has been read) and
the distinct blocks seen so far. Updates happen under a per-service lock
file, so concurrent requests for one service serialize instead of
double-fetching, while different services never contend.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from urllib.parse import quote

from healthnode.blocks import iter_blocks
from healthnode.lock import ServiceLock
from healthnode.models import ErrorCacheEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorCache:
    def __init__(self, cache_dir: str, units, journal,
                 lock_wait_seconds: float = 30.0,
                 lock_stale_seconds: float = 60.0,
                 lock_poll_interval: float = 0.1,
                 clock=None, time_func=None, sleep_func=None):
        self._cache_dir = cache_dir
        self._units = units
        self._journal = journal
        self._lock_wait_seconds = lock_wait_seconds
        self._lock_stale_seconds = lock_stale_seconds
        self._lock_poll_interval = lock_poll_interval
        self._clock = clock or _utcnow
        self._time_func = time_func
        self._sleep_func = sleep_func

    def entry_path(self, service: str) -> str:
        return os.path.join(self._cache_dir, quote(service, safe="") + ".json")

    def lock_for(self, service: str) -> ServiceLock:
        return ServiceLock(
            os.path.join(self._cache_dir, quote(service, safe="") + ".lock"),
            wait_seconds=self._lock_wait_seconds,
            stale_seconds=self._lock_stale_seconds,
            poll_interval=self._lock_poll_interval,
            time_func=self._time_func,
            sleep_func=self._sleep_func,
        )

    def load(self, service: str) -> ErrorCacheEntry:
        path = self.entry_path(service)
        if not os.path.exists(path):
            return ErrorCacheEntry(service)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ErrorCacheEntry.from_dict(service, json.load(f))
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            logger.warning("Discarding unreadable error cache %s: %s", path, e)
            return ErrorCacheEntry(service)

    def save(self, entry: ErrorCacheEntry) -> None:
        os.makedirs(self._cache_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._cache_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.to_dict(), f)
            os.replace(tmp, self.entry_path(entry.service))
        except Exception:
            os.unlink(tmp)
            raise

    def errors_since(self, service: str) -> list[str]:
        """Return every distinct error block logged since the unit's activation.

        Raises CacheBusy if another caller holds the service lock for longer
        than the wait bound.
        """
        start = self._units.activation_start(service)
        if start is None:
            return []

        with self.lock_for(service):
            entry = self.load(service)
            if _predates(entry.watermark, start) or _predates(entry.activation, start):
                if entry.blocks:
                    logger.warning("Service %s restarted at %s, dropping %d cached block(s)",
                                   service, start.isoformat(), len(entry.blocks))
                entry.reset(start)
            entry.activation = start

            now = self._clock()
            since = max(entry.watermark, start) if entry.watermark else start
            text = self._journal.read_since(service, since)
            # Lines of the previous run can share the activation second.
            added = entry.extend(iter_blocks(text, since=start))
            entry.watermark = now
            self.save(entry)

        if added:
            logger.info("Service %s: %d new error block(s), %d total",
                        service, added, len(entry.blocks))
        return list(entry.blocks)

    def error_count(self, service: str) -> int:
        return len(self.errors_since(service))


def _predates(ts: datetime | None, start: datetime) -> bool:
    return ts is not None and ts < start
