"""Install lock - mutual exclusion for install/update of one SDK version.

The lock is a file created atomically (O_EXCL) inside the version directory.
It records who holds it so a competing process can tell a live owner from one
that crashed:

- owner on this host whose pid no longer exists -> dead
- lock file not touched for `stale_after` seconds -> dead (the holder
  refreshes the file's mtime as a heartbeat while it runs)

A dead owner's lock is recovered; a live owner is waited for until `timeout`.

Recovery moves the lock file aside with an atomic rename and then re-checks
what it moved. If that turns out to be a live lock (a new owner created it
after the liveness check), it is linked back into place. One window remains:
if yet another process creates the lock between the rename and the link-back,
the link-back fails and two holders exist until the displaced one releases
(its release sees a foreign token and leaves the file alone). This is logged
as a warning.

Lock file format (JSON):
{
  "pid": 4242,
  "hostname": "build-7",
  "token": "0f3c...",
  "acquired_at": "2025-10-26T12:00:00+00:00"
}
"""

import asyncio
import json
import logging
import os
import socket
import time
import uuid
from dataclasses import asdict
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from pathlib import Path

from .exceptions import LockContentionError
from .exceptions import StaleLockError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".install.lock"


@dataclass
class LockOwner:
    """Holder of an install lock, as persisted in the lock file."""

    pid: int
    hostname: str
    token: str
    acquired_at: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "LockOwner":
        """Create from dictionary."""
        return cls(**data)

    @classmethod
    def current(cls) -> "LockOwner":
        """Owner record for this process, with a fresh token."""
        return cls(
            pid=os.getpid(),
            hostname=socket.gethostname(),
            token=uuid.uuid4().hex,
            acquired_at=datetime.now(UTC).isoformat(),
        )


def _load_owner(path: Path) -> LockOwner | None:
    try:
        return LockOwner.from_dict(json.loads(path.read_text()))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, TypeError) as e:
        logger.debug(f"Unreadable lock file {path}: {e}")
        return None


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class InstallLock:
    """
    Non-reentrant, cross-process lock rooted at an installation directory.

    Usage:
        >>> async with InstallLock(Path("~/.cache/managed-sdk/LATEST")):
        ...     ...  # install or update

    Released on every exit path of the `async with` block, including
    cancellation.
    """

    def __init__(
        self,
        directory: Path,
        timeout: float = 300.0,
        stale_after: float = 120.0,
        poll_interval: float = 0.5,
        name: str = LOCK_FILE_NAME,
    ):
        """Initialize lock for a directory.

        Args:
            directory: Directory holding the lock file (created if needed)
            timeout: Seconds to wait for a live owner; 0 fails fast
            stale_after: Seconds without heartbeat after which an owner is dead
            poll_interval: Seconds between acquisition attempts
            name: Lock file name inside `directory`
        """
        self.directory = directory
        self.lock_path = directory / name
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self._owner: LockOwner | None = None
        self._heartbeat: asyncio.Task | None = None

    @property
    def held(self) -> bool:
        return self._owner is not None

    async def __aenter__(self) -> "InstallLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    def read_owner(self) -> LockOwner | None:
        """
        Read the current lock owner.

        Returns:
            Owner record, or None if the lock is free or its record unreadable
        """
        return _load_owner(self.lock_path)

    def is_owner_alive(self, owner: LockOwner | None, heartbeat_age: float) -> bool:
        """Liveness check: heartbeat recency, plus pid existence for local owners."""
        if heartbeat_age > self.stale_after:
            return False
        if owner is None:
            # Record not written yet (or torn); trust the heartbeat
            return True
        # os.kill(pid, 0) would terminate the target on Windows
        if os.name == "posix" and owner.hostname == socket.gethostname():
            return _pid_alive(owner.pid)
        return True

    async def acquire(self) -> None:
        """
        Acquire the lock, waiting for a live owner up to `timeout`.

        Raises:
            LockContentionError: If a live owner holds the lock past the timeout,
                or if this instance already holds it (not reentrant)
            StaleLockError: If a dead owner's lock cannot be removed
        """
        if self._owner is not None:
            raise LockContentionError(
                f"Install lock {self.lock_path} is already held by this instance",
                owner=self._owner,
                owner_alive=True,
            )

        self.directory.mkdir(parents=True, exist_ok=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        while True:
            owner = self._try_create()
            if owner is not None:
                self._owner = owner
                self._heartbeat = loop.create_task(self._beat())
                logger.debug(f"Acquired install lock {self.lock_path}")
                return

            try:
                heartbeat_age = time.time() - self.lock_path.stat().st_mtime
            except FileNotFoundError:
                continue
            existing = self.read_owner()

            if not self.is_owner_alive(existing, heartbeat_age):
                self._break_stale(existing)
                continue

            if loop.time() >= deadline:
                raise LockContentionError(
                    f"Install lock {self.lock_path} is held by "
                    f"{f'pid {existing.pid} on {existing.hostname}' if existing else 'another process'}",
                    owner=existing,
                    owner_alive=True,
                    context={"lock_path": str(self.lock_path)},
                )
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        """Release the lock if held. Leaves a lock taken over by someone else alone."""
        if self._owner is None:
            return
        owner, self._owner = self._owner, None

        if self._heartbeat is not None:
            self._heartbeat.cancel()
            await asyncio.wait({self._heartbeat})
            self._heartbeat = None

        current = self.read_owner()
        if current is None or current.token != owner.token:
            logger.warning(f"Install lock {self.lock_path} was taken over while held")
            return
        self.lock_path.unlink(missing_ok=True)
        logger.debug(f"Released install lock {self.lock_path}")

    def _try_create(self) -> LockOwner | None:
        owner = LockOwner.current()
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        with os.fdopen(fd, "w") as f:
            json.dump(owner.to_dict(), f)
        return owner

    def _break_stale(self, observed: LockOwner | None) -> None:
        """Remove a dead owner's lock without clobbering a fresh one.

        The lock is moved aside atomically first. Unless what was moved is the
        very record judged dead, its liveness is checked again (rename keeps the
        heartbeat mtime) and a live lock is put back.
        """
        who = f"pid {observed.pid} on {observed.hostname}" if observed else "unknown owner"
        logger.warning(f"Recovering stale install lock {self.lock_path} held by {who}")

        quarantine = self.lock_path.with_name(f"{self.lock_path.name}.stale.{uuid.uuid4().hex}")
        try:
            os.replace(self.lock_path, quarantine)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StaleLockError(
                f"Cannot remove stale install lock {self.lock_path}: {e}",
                context={"lock_path": str(self.lock_path)},
            ) from e

        try:
            moved = _load_owner(quarantine)
            same_record = observed is not None and moved is not None and moved.token == observed.token
            if not same_record and self.is_owner_alive(moved, time.time() - quarantine.stat().st_mtime):
                try:
                    os.link(quarantine, self.lock_path)
                except FileExistsError:
                    logger.warning(f"Install lock {self.lock_path} was recreated during stale lock recovery")
        finally:
            quarantine.unlink(missing_ok=True)

    async def _beat(self) -> None:
        interval = self.stale_after / 4
        while True:
            await asyncio.sleep(interval)
            try:
                os.utime(self.lock_path)
            except FileNotFoundError:
                # Absent while a competitor re-checks it during stale recovery
                logger.debug(f"Install lock {self.lock_path} missing at heartbeat")
