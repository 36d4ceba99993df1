"""
Per-session turn serialization.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Optional

from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import SessionBusyError
from lesson_tutor.shared.logging import get_logger

logger = get_logger(__name__)


class SessionLockRegistry:
    """One asyncio.Lock per session id, created on demand and dropped when idle."""

    def __init__(self, reject_concurrent: Optional[bool] = None):
        self.reject_concurrent = (
            reject_concurrent if reject_concurrent is not None
            else settings.session.reject_concurrent_turns
        )
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: str):
        """
        Hold the session's lock for the duration of a turn.

        Raises:
            SessionBusyError if a turn is in flight and concurrent turns are rejected
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock

        if self.is_busy(session_id):
            if self.reject_concurrent:
                raise SessionBusyError(f"A turn is already in progress for session {session_id}")
            logger.debug(f"Turn for session {session_id} waiting on in-flight turn")

        self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[session_id] -= 1
            if self._waiters[session_id] == 0:
                del self._waiters[session_id]
                self._locks.pop(session_id, None)

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
