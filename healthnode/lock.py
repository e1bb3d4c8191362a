"""Service-scoped lock file with bounded wait and staleness reclaim.

The lock is a file created with O_CREAT | O_EXCL holding the wall-clock time
it was acquired. It works across processes (one process per request) as well
as across threads of the standalone server. A lock whose recorded time is
older than the staleness threshold is presumed abandoned by a crashed holder
and is reclaimed by whichever waiter notices first, holding an flock on a
sibling `.reclaim` file while it re-checks and removes it.
"""

import fcntl
import json
import logging
import os
import time

from healthnode.errors import CacheBusy

logger = logging.getLogger(__name__)


class ServiceLock:
    def __init__(self, path: str, wait_seconds: float = 30.0,
                 stale_seconds: float = 60.0, poll_interval: float = 0.1,
                 time_func=None, sleep_func=None):
        self._path = path
        self._wait_seconds = wait_seconds
        self._stale_seconds = stale_seconds
        self._poll_interval = poll_interval
        self._time_func = time_func or time.time
        self._sleep_func = sleep_func or time.sleep
        self._held = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Poll until the lock is ours or the wait bound expires (CacheBusy)."""
        deadline = self._time_func() + self._wait_seconds
        while True:
            if self._try_create():
                return
            self._reclaim_if_stale()
            if self._try_create():
                return
            if self._time_func() >= deadline:
                raise CacheBusy(f"lock {self._path} busy for {self._wait_seconds:g}s")
            self._sleep_func(self._poll_interval)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            os.unlink(self._path)
        except FileNotFoundError:
            logger.warning("Lock %s vanished before release (reclaimed as stale?)",
                           self._path)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def _try_create(self) -> bool:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            json.dump({"acquired": self._time_func(), "pid": os.getpid()}, f)
        self._held = True
        return True

    def _acquired_at(self, path: str) -> float | None:
        """Recorded acquisition time, falling back to mtime for a half-written file."""
        try:
            with open(path, "r") as f:
                return float(json.load(f)["acquired"])
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError):
            try:
                return os.stat(path).st_mtime
            except FileNotFoundError:
                return None

    def _is_stale(self, path: str) -> bool:
        acquired = self._acquired_at(path)
        if acquired is None:
            return False
        return self._time_func() - acquired > self._stale_seconds

    def _reclaim_if_stale(self) -> None:
        if not self._is_stale(self._path):
            return
        # Reclaimers serialize on a sibling guard file. Creation never needs
        # the guard, since O_EXCL only succeeds once the stale file is gone.
        with open(self._path + ".reclaim", "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                # Re-read under the guard: another waiter may already have
                # reclaimed it and taken a fresh lock.
                if not self._is_stale(self._path):
                    return
                try:
                    os.unlink(self._path)
                except FileNotFoundError:
                    return
                logger.warning("Reclaimed stale lock %s", self._path)
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)
