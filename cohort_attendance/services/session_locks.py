# cohort_attendance/services/session_locks.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class SessionBusyError(RuntimeError):
    """A reconciliation for this session is already running."""


class SessionLockRegistry:
    """
    One asyncio.Lock per session id, so recalculations of the same session
    never interleave within this process. Owned by the app instance.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        """
        Hold the session's lock; raise SessionBusyError if it is already held.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if lock.locked():
            raise SessionBusyError(f"Attendance for session '{session_id}' is already being calculated")
        async with lock:
            try:
                yield
            finally:
                self._locks.pop(session_id, None)
