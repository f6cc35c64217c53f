"""
lock.py — Coarse, file-backed lock for mutating package operations.

The lock is a small JSON document with an expiry. A holder that dies
without cleaning up leaves a stale record behind; the next is_locked()
check past its expiry deletes it.
"""

import atexit
import json
import logging
import os
import time
from dataclasses import asdict, dataclass

from .config import LOCK_TIMEOUT
from .errors import LockedError, PackageIOError

logger = logging.getLogger(__name__)

MSG_LOCKED = ("Another pkg operation is in progress. "
              "If you want to proceed: remove {path} or try `pkg unlock`")


@dataclass
class LockRecord:
    pid: int
    created_at: int
    expires_at: int
    timeout_seconds: int


class LockManager:
    def __init__(self, lock_path, timeout_seconds=None, clock=time.time):
        self.lock_path = lock_path
        self.timeout_seconds = timeout_seconds or LOCK_TIMEOUT
        self._clock = clock
        self._hook_installed = False

    def _now(self):
        return int(self._clock())

    def read(self):
        """Return the current LockRecord, or None if absent or unreadable."""
        try:
            with open(self.lock_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return LockRecord(
                pid=int(data["pid"]),
                created_at=int(data["created_at"]),
                expires_at=int(data["expires_at"]),
                timeout_seconds=int(data["timeout_seconds"]),
            )
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Unreadable lock record at %s", self.lock_path)
            return None

    def is_locked(self):
        """Return True while a live lock exists; reclaim it once expired."""
        if not os.path.exists(self.lock_path):
            return False
        record = self.read()
        if record is None or self._now() > record.expires_at:
            logger.warning("Reclaiming stale lock %s", self.lock_path)
            self._unlink()
            return False
        return True

    def acquire(self):
        """Create the lock record.

        Raises:
            LockedError: If a live lock already exists.
            PackageIOError: If the lock file cannot be created.
        """
        if self.is_locked():
            raise LockedError(MSG_LOCKED.format(path=self.lock_path))

        lock_dir = os.path.dirname(self.lock_path) or "."
        try:
            os.makedirs(lock_dir, exist_ok=True)
        except OSError as e:
            raise PackageIOError(f"Cannot create lock directory: {lock_dir} ({e})") from e
        now = self._now()
        record = LockRecord(
            pid=os.getpid(),
            created_at=now,
            expires_at=now + self.timeout_seconds,
            timeout_seconds=self.timeout_seconds,
        )
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            # Another process won the race between is_locked() and here
            raise LockedError(MSG_LOCKED.format(path=self.lock_path)) from None
        except OSError as e:
            raise PackageIOError(f"Cannot create lock file: {self.lock_path} ({e})") from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(record), f, indent=4)
        logger.debug("Lock acquired: %s (expires in %ss)",
                     self.lock_path, self.timeout_seconds)
        return record

    def release(self):
        """Delete the lock. A missing file is not an error."""
        self._unlink()

    def force_unlock(self):
        """Delete the lock regardless of holder, for manual recovery."""
        if self._unlink():
            logger.info("Lock forcibly removed: %s", self.lock_path)

    def install_cleanup_hook(self):
        """Delete this process's lock at interpreter exit.

        Only a record whose pid matches the current process is removed, so
        an exiting process never releases a lock another one holds.
        """
        if self._hook_installed:
            return
        atexit.register(self._cleanup_own_lock)
        self._hook_installed = True

    def _cleanup_own_lock(self):
        record = self.read()
        if record is not None and record.pid == os.getpid():
            self._unlink()

    def _unlink(self):
        try:
            os.unlink(self.lock_path)
            return True
        except FileNotFoundError:
            return False
