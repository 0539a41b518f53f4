"""Tests for tool dispatch and idempotent execution."""

import pytest

from supportflow.domain import MessageType
from supportflow.orchestration.planner import ToolCall
from supportflow.orchestration.tools import (
    RegistryToolExecutor,
    ToolDispatcher,
    ToolExecutionResult,
    ToolExecutor,
    build_idempotency_key,
)
from supportflow.stores import InMemoryConversationStore
from tests.factories import ConversationFactory


class ExplodingExecutor(ToolExecutor):
    async def execute(self, conversation, call, idempotency_key) -> ToolExecutionResult:
        raise TimeoutError("order service timed out")


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def registry() -> RegistryToolExecutor:
    calls: list[dict] = []

    async def lookup_order(args: dict) -> dict:
        calls.append(args)
        return {"order_id": args["order_id"], "status": "shipped"}

    executor = RegistryToolExecutor({"lookup_order": lookup_order})
    executor.calls = calls
    return executor


class TestIdempotencyKey:
    def test_stable_across_argument_order(self) -> None:
        first = build_idempotency_key("c1", 2, ToolCall(name="t", args={"a": 1, "b": 2}))
        second = build_idempotency_key("c1", 2, ToolCall(name="t", args={"b": 2, "a": 1}))
        assert first == second
        assert first.startswith("c1:2:t:")

    def test_differs_per_turn(self) -> None:
        call = ToolCall(name="t", args={"a": 1})
        assert build_idempotency_key("c1", 1, call) != build_idempotency_key("c1", 2, call)


class TestRegistryToolExecutor:
    @pytest.mark.asyncio
    async def test_unknown_tool_fails(self, registry) -> None:
        result = await registry.execute(
            ConversationFactory.create(), ToolCall(name="cancel_order"), "k1"
        )
        assert not result.success
        assert result.error_class == "UnknownTool"

    @pytest.mark.asyncio
    async def test_repeated_key_returns_cached_result(self, registry) -> None:
        conversation = ConversationFactory.create()
        call = ToolCall(name="lookup_order", args={"order_id": "42"})

        first = await registry.execute(conversation, call, "k1")
        second = await registry.execute(conversation, call, "k1")

        assert first == second
        assert len(registry.calls) == 1

    @pytest.mark.asyncio
    async def test_cached_result_expires_after_ttl(self) -> None:
        now = [0.0]
        calls: list[dict] = []

        async def lookup_order(args: dict) -> dict:
            calls.append(args)
            return {"status": "shipped"}

        executor = RegistryToolExecutor(
            {"lookup_order": lookup_order}, ttl_seconds=60, clock=lambda: now[0]
        )
        conversation = ConversationFactory.create()
        call = ToolCall(name="lookup_order", args={"order_id": "42"})

        await executor.execute(conversation, call, "k1")
        now[0] = 59.0
        await executor.execute(conversation, call, "k1")
        assert len(calls) == 1

        now[0] = 60.0
        await executor.execute(conversation, call, "k1")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_oldest_results_evicted_beyond_max_entries(self) -> None:
        calls: list[dict] = []

        async def lookup_order(args: dict) -> dict:
            calls.append(args)
            return {"status": "shipped"}

        executor = RegistryToolExecutor({"lookup_order": lookup_order}, max_entries=2)
        conversation = ConversationFactory.create()
        call = ToolCall(name="lookup_order", args={"order_id": "42"})

        for key in ("k1", "k2", "k3"):
            await executor.execute(conversation, call, key)
        await executor.execute(conversation, call, "k3")
        assert len(calls) == 3

        await executor.execute(conversation, call, "k1")
        assert len(calls) == 4


class TestToolDispatcher:
    @pytest.mark.asyncio
    async def test_success_updates_message_and_log(self, store, registry) -> None:
        conversation = ConversationFactory.create()
        await store.save(conversation)
        dispatcher = ToolDispatcher(registry, store)

        updated, entry = await dispatcher.dispatch(
            conversation, ToolCall(name="lookup_order", args={"order_id": "42"})
        )

        assert entry.ok
        assert entry.result == {"order_id": "42", "status": "shipped"}
        assert entry.error_class is None
        assert updated.context.tool_log == (entry,)
        assert conversation.context.tool_log == ()

        (message,) = await store.list_messages(conversation.id)
        assert message.type == MessageType.TOOL
        assert message.content == "Calling tool in the background: lookup_order"
        assert message.metadata["tool_status"] == "SUCCESS"
        assert message.metadata["tool_output"]["status"] == "shipped"
        assert message.metadata["idempotency_key"] == entry.idempotency_key

    @pytest.mark.asyncio
    async def test_raised_exception_becomes_failure(self, store) -> None:
        conversation = ConversationFactory.create()
        await store.save(conversation)
        dispatcher = ToolDispatcher(ExplodingExecutor(), store)

        updated, entry = await dispatcher.dispatch(conversation, ToolCall(name="lookup_order"))

        assert not entry.ok
        assert entry.error_class == "TimeoutError"
        assert entry.error == "order service timed out"
        (message,) = await store.list_messages(conversation.id)
        assert message.metadata["tool_status"] == "ERROR"
        assert message.metadata["tool_error"] == "order service timed out"
        assert updated.context.tool_results_for_turn(0) == []

    @pytest.mark.asyncio
    async def test_unknown_tool_logged_as_failure(self, store, registry) -> None:
        conversation = ConversationFactory.create()
        await store.save(conversation)

        _, entry = await ToolDispatcher(registry, store).dispatch(
            conversation, ToolCall(name="cancel_order")
        )
        assert not entry.ok
        assert entry.error_class == "UnknownTool"
