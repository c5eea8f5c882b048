"""Cross-process exclusive lock backed by a create-only lock file."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

from token_bridge.core.errors import LockTimeoutError
from token_bridge.utils.files import FILE_MODE, ensure_private_dir

logger = logging.getLogger(__name__)

LOCK_RETRY_DELAY_SECONDS = 0.05
UNREADABLE_LOCK_GRACE_SECONDS = 2.0


def pid_alive(pid: int) -> bool:
    """Check ``pid`` with signal 0, which checks existence without delivering anything."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else.
        return True
    except OSError:
        return False
    return True


class FileLock:
    """Async context manager holding ``path`` exclusively across processes.

    The lock file contains the holder's PID. A lock whose holder is no longer
    running is removed and re-acquired; otherwise acquisition retries until
    ``timeout`` seconds have passed and then raises ``LockTimeoutError``.
    """

    def __init__(
        self,
        path: Path,
        *,
        timeout: float = 10.0,
        retry_delay: float = LOCK_RETRY_DELAY_SECONDS,
    ) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._retry_delay = retry_delay
        self._fd: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._path

    async def acquire(self) -> None:
        ensure_private_dir(self._path.parent)
        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
            except FileExistsError:
                if self._clear_stale_lock():
                    continue
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(message=f"Timed out waiting for lock {self._path.name}.")
                await asyncio.sleep(self._retry_delay)
                continue

            try:
                os.write(fd, f"{os.getpid()}\n".encode("ascii"))
                os.fsync(fd)
            except OSError:
                os.close(fd)
                self._path.unlink(missing_ok=True)
                raise
            self._fd = fd
            return

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        finally:
            self._fd = None
            try:
                self._path.unlink()
            except FileNotFoundError:
                logger.warning("Lock file %s vanished before release", self._path)

    def _clear_stale_lock(self) -> bool:
        """Remove the lock file when its holder is gone. Returns True if removed.

        The inspected file stays open until it has been moved aside, so its
        inode cannot be reused and a lock re-taken by another waiter in the
        meantime is recognised and put back.
        """
        try:
            handle = open(self._path, "rb")
        except FileNotFoundError:
            # Released between our open attempt and this check.
            return True
        except OSError:
            return False

        with handle:
            try:
                inspected = os.fstat(handle.fileno())
                raw = handle.read().decode("ascii", "replace").strip()
            except OSError:
                return False

            try:
                holder = int(raw)
            except ValueError:
                # The holder may not have written its PID yet.
                if time.time() - inspected.st_mtime < UNREADABLE_LOCK_GRACE_SECONDS:
                    return False
                holder = -1

            if holder > 0 and pid_alive(holder):
                return False

            return self._discard_if_unchanged(inspected, raw)

    def _discard_if_unchanged(self, inspected: os.stat_result, raw: str) -> bool:
        aside = self._path.with_name(f"{self._path.name}.stale.{os.getpid()}.{time.time_ns()}")
        try:
            os.rename(self._path, aside)
        except FileNotFoundError:
            return True

        moved = os.stat(aside)
        if (moved.st_dev, moved.st_ino) != (inspected.st_dev, inspected.st_ino):
            # Another waiter reclaimed the lock after we read it.
            try:
                os.link(aside, self._path)
            except FileExistsError:
                logger.error("Lock %s was re-taken twice while clearing a stale holder", self._path)
            os.unlink(aside)
            return False

        logger.warning("Removing stale lock %s (holder pid %s)", self._path, raw or "unknown")
        os.unlink(aside)
        return True

    async def __aenter__(self) -> "FileLock":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


__all__ = ["FileLock", "pid_alive"]
