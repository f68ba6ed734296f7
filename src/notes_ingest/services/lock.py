"""Mutual exclusion between the bulk and incremental jobs.

The lock is a single database row naming the holder's pid, host and job tag.
Acquisition never blocks. A token whose holder process no longer exists on
this host is reclaimed with a compare-and-swap update, so two processes that
both see the same stale token cannot both win.
"""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import psutil
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notes_ingest.db.session import SessionLocal
from notes_ingest.db.time import utcnow
from notes_ingest.models import ProcessLock

logger = logging.getLogger(__name__)

LOCK_ROW_ID = 1


class LockStatus(str, Enum):
    ACQUIRED = "acquired"
    BUSY = "busy"


@dataclass(frozen=True)
class LockHolder:
    pid: int
    tag: str
    hostname: str
    acquired_at: datetime


class LockBusyError(RuntimeError):
    """Raised by :meth:`LockCoordinator.held` when another job holds the lock."""

    def __init__(self, holder: LockHolder | None) -> None:
        self.holder = holder
        if holder is None:
            super().__init__("lock is busy")
        else:
            super().__init__(
                f"lock held by {holder.tag} (pid {holder.pid} on {holder.hostname})"
            )


class LockOwnershipError(RuntimeError):
    """Raised when a process acts on a lock it does not hold. Fatal for the job."""


def process_alive(pid: int) -> bool:
    return psutil.pid_exists(pid)


def _holder(row: ProcessLock) -> LockHolder:
    return LockHolder(row.holder_pid, row.tag, row.hostname, row.acquired_at)


class LockCoordinator:
    """Explicit lock resource shared by the long-running jobs."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        pid: int | None = None,
        hostname: str | None = None,
        liveness: Callable[[int], bool] = process_alive,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.pid = pid if pid is not None else os.getpid()
        self.hostname = hostname if hostname is not None else socket.gethostname()
        self._liveness = liveness

    def holder(self) -> LockHolder | None:
        with self._session_factory() as db:
            row = db.get(ProcessLock, LOCK_ROW_ID)
            return _holder(row) if row is not None else None

    def _is_stale(self, row: ProcessLock) -> bool:
        # Liveness can only be probed for processes on this host.
        return row.hostname == self.hostname and not self._liveness(row.holder_pid)

    def _owns(self, row: ProcessLock, tag: str) -> bool:
        return row.holder_pid == self.pid and row.hostname == self.hostname and row.tag == tag

    def acquire(self, tag: str) -> LockStatus:
        """Try to take the lock for ``tag``; never waits."""
        with self._session_factory() as db:
            row = db.get(ProcessLock, LOCK_ROW_ID)
            if row is None:
                db.add(
                    ProcessLock(
                        id=LOCK_ROW_ID,
                        holder_pid=self.pid,
                        tag=tag,
                        hostname=self.hostname,
                        acquired_at=utcnow(),
                    )
                )
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.info("Lock for %s lost the race to another process", tag)
                    return LockStatus.BUSY
                logger.info("Lock acquired by %s (pid %s)", tag, self.pid)
                return LockStatus.ACQUIRED

            if self._owns(row, tag):
                return LockStatus.ACQUIRED

            if not self._is_stale(row):
                logger.info(
                    "Lock busy: held by %s (pid %s on %s)", row.tag, row.holder_pid, row.hostname
                )
                return LockStatus.BUSY

            stale = _holder(row)
            result = db.execute(
                update(ProcessLock)
                .where(
                    ProcessLock.id == LOCK_ROW_ID,
                    ProcessLock.holder_pid == stale.pid,
                    ProcessLock.tag == stale.tag,
                    ProcessLock.hostname == stale.hostname,
                )
                .values(
                    holder_pid=self.pid,
                    tag=tag,
                    hostname=self.hostname,
                    acquired_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                return LockStatus.BUSY
            logger.warning(
                "Reclaimed stale lock from %s (pid %s, acquired %s)",
                stale.tag,
                stale.pid,
                stale.acquired_at,
            )
            return LockStatus.ACQUIRED

    def assert_holder(self, tag: str) -> None:
        """Raise :class:`LockOwnershipError` unless this process holds ``tag``."""
        with self._session_factory() as db:
            row = db.get(ProcessLock, LOCK_ROW_ID)
            if row is None or not self._owns(row, tag):
                raise LockOwnershipError(f"pid {self.pid} does not hold the {tag} lock")

    def release(self, tag: str) -> None:
        """Release the lock. Releasing a token held by someone else is an error."""
        with self._session_factory() as db:
            row = db.get(ProcessLock, LOCK_ROW_ID)
            if row is None:
                logger.warning("Release of %s requested but no lock is held", tag)
                return
            if not self._owns(row, tag):
                raise LockOwnershipError(
                    f"pid {self.pid} cannot release lock held by {row.tag} (pid {row.holder_pid})"
                )
            db.execute(
                delete(ProcessLock)
                .where(
                    ProcessLock.id == LOCK_ROW_ID,
                    ProcessLock.holder_pid == self.pid,
                    ProcessLock.tag == tag,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info("Lock released by %s (pid %s)", tag, self.pid)

    @contextmanager
    def held(self, tag: str) -> Iterator[None]:
        """Hold the lock for the duration of a block; always released on exit."""
        if self.acquire(tag) is LockStatus.BUSY:
            raise LockBusyError(self.holder())
        try:
            yield
        finally:
            self.release(tag)
