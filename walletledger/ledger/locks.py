"""
Per-User Operation Lock

Every balance-affecting operation, and every audit snapshot read, runs
while holding the owning user's lock. Operations of different users
never wait on each other.

Once a mutation sequence has started it is run to completion, even if
the caller is cancelled: there is no safe point between Reverse and
Forward to stop at.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Optional

import structlog

from walletledger.config import get_settings
from walletledger.ledger.errors import LockTimeoutError


logger = structlog.get_logger(__name__)


class UserLockRegistry:
    """
    One asyncio.Lock per user id, alive while someone holds or waits on it.

    A lock is dropped as soon as its last holder or waiter is gone, so the
    registry does not grow with every user ever seen and an idle registry
    can be reused from a later event loop. Concurrent callers must share
    one event loop; the app runs every engine call on a single loop thread.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._timeout = (
            timeout if timeout is not None
            else get_settings().ledger.lock_timeout_seconds
        )
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per user
        self._users: dict[str, int] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    async def _acquire(self, lock: asyncio.Lock) -> None:
        if self._timeout > 0:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        elif lock.locked():
            # A zero timeout never waits
            raise asyncio.TimeoutError
        else:
            await lock.acquire()

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        """
        Hold the user's lock for the duration of the block.

        Raises:
            LockTimeoutError: the lock was not acquired within the timeout;
                nothing inside the block has run
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            try:
                await self._acquire(lock)
            except asyncio.TimeoutError:
                logger.warning("ledger_lock_timeout", user_id=user_id, timeout=self._timeout)
                raise LockTimeoutError(user_id, self._timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]


async def run_to_completion(operation: Awaitable[Any]) -> Any:
    """
    Await an operation that must not be interrupted half-way.

    A cancellation of the caller is deferred until the operation has
    finished, then re-raised. If the operation itself failed, that error
    is raised instead of the cancellation.
    """
    task = asyncio.ensure_future(operation)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if task.done():
            raise
        logger.warning("mutation_cancel_deferred")
        while not task.done():
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                continue
        # Surface the operation's own failure, if any, before the cancel.
        task.result()
        raise
