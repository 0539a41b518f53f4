"""Tests for the per-conversation lock coordinator."""

import asyncio
from datetime import timedelta

import pytest

from supportflow.domain.message import utc_now
from supportflow.orchestration.lock import LockCoordinator
from supportflow.stores import InMemoryConversationStore
from tests.factories import seed_conversation


class FailingUnlockStore(InMemoryConversationStore):
    async def unlock(self, conversation_id: str) -> None:
        raise ConnectionError("store unavailable")


class TestLockCoordinator:
    @pytest.fixture
    def store(self) -> InMemoryConversationStore:
        return InMemoryConversationStore()

    @pytest.mark.asyncio
    async def test_concurrent_acquire_only_one_wins(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        lock = LockCoordinator(store, owner_id="worker-1")

        results = await asyncio.gather(*(lock.acquire(conversation.id) for _ in range(5)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_two_workers_exclude_each_other(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        first = LockCoordinator(store, owner_id="worker-1")
        second = LockCoordinator(store, owner_id="worker-2")

        assert await first.acquire(conversation.id)
        assert not await second.acquire(conversation.id)
        await first.release(conversation.id)
        assert await second.acquire(conversation.id)

    @pytest.mark.asyncio
    async def test_lock_carries_ttl_and_owner(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        now = utc_now()
        lock = LockCoordinator(store, ttl_seconds=30, owner_id="worker-1", clock=lambda: now)

        await lock.acquire(conversation.id)
        stored = await store.get(conversation.id)
        assert stored.locked_until == now + timedelta(seconds=30)
        assert stored.locked_by.startswith("worker-1:")

    @pytest.mark.asyncio
    async def test_expired_lock_is_reclaimed(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        start = utc_now()
        stale = LockCoordinator(store, ttl_seconds=10, owner_id="dead", clock=lambda: start)
        fresh = LockCoordinator(
            store, ttl_seconds=10, owner_id="alive", clock=lambda: start + timedelta(seconds=11)
        )

        assert await stale.acquire(conversation.id)
        assert await fresh.acquire(conversation.id)

    @pytest.mark.asyncio
    async def test_hold_releases_on_exception(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        lock = LockCoordinator(store)

        with pytest.raises(RuntimeError):
            async with lock.hold(conversation.id) as acquired:
                assert acquired
                raise RuntimeError("stage failed")

        stored = await store.get(conversation.id)
        assert stored.locked_by is None
        assert await lock.acquire(conversation.id)

    @pytest.mark.asyncio
    async def test_hold_does_not_release_someone_elses_lock(self, store) -> None:
        conversation, _ = await seed_conversation(store, "hi")
        holder = LockCoordinator(store, owner_id="holder")
        await holder.acquire(conversation.id)

        async with LockCoordinator(store).hold(conversation.id) as acquired:
            assert not acquired

        assert (await store.get(conversation.id)).locked_by.startswith("holder:")

    @pytest.mark.asyncio
    async def test_release_failure_is_logged_not_raised(self) -> None:
        store = FailingUnlockStore()
        conversation, _ = await seed_conversation(store, "hi")
        lock = LockCoordinator(store)

        async with lock.hold(conversation.id) as acquired:
            assert acquired
