"""Per-conversation processing lock."""

import os
import socket
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import uuid4

from supportflow.domain.message import utc_now
from supportflow.observability import metrics
from supportflow.observability.logging import get_logger
from supportflow.stores import ConversationStore

logger = get_logger(__name__)


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class LockCoordinator:
    """Ensures at most one processing pass per conversation at a time.

    The lock lives on the conversation record (locked_by / locked_until)
    and is taken with a conditional store update; every acquisition uses a
    fresh owner token, so two passes in one process exclude each other too.
    A worker that dies mid-pass leaves a lock that expires after the TTL.
    """

    def __init__(
        self,
        conversation_store: ConversationStore,
        *,
        ttl_seconds: int = 120,
        owner_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = conversation_store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._owner = owner_id or default_owner_id()
        self._clock = clock

    @property
    def owner_id(self) -> str:
        return self._owner

    async def acquire(self, conversation_id: str) -> bool:
        """Try to take the lock. False means someone else is processing."""
        now = self._clock()
        owner = f"{self._owner}:{uuid4().hex[:8]}"
        acquired = await self._store.try_lock(conversation_id, owner, now + self._ttl, now)
        if not acquired:
            metrics.LOCK_SKIPS.inc()
            logger.debug("conversation_lock_busy", conversation_id=conversation_id)
        return acquired

    async def release(self, conversation_id: str) -> None:
        """Clear the lock. Errors are logged, the TTL covers a failed release."""
        try:
            await self._store.unlock(conversation_id)
        except Exception as e:
            logger.error(
                "conversation_unlock_failed",
                conversation_id=conversation_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncGenerator[bool, None]:
        """Hold the lock for the duration of the block.

        Usage:
            async with lock.hold(conversation_id) as acquired:
                if not acquired:
                    return
                ...
        """
        acquired = await self.acquire(conversation_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(conversation_id)
