"""Tests for perception, agent assignment, closure validation and titling."""

import pytest

from supportflow.domain import Agent, MessageIntent, MessageType, Sentiment
from supportflow.errors import PerceptionError
from supportflow.orchestration.agents import AgentSelector
from supportflow.orchestration.closure import (
    SATISFIED_CLOSING_MESSAGE,
    UNSATISFIED_CLOSING_MESSAGE,
    ClosureValidator,
    TitleGenerator,
    closing_message_for,
)
from supportflow.orchestration.perception import PerceptionStage
from supportflow.orchestration.translation import MessageTranslator
from supportflow.providers.llm import MockLLMExecutor, ProviderError
from supportflow.stores import InMemoryConversationStore, InMemoryOrganizationStore
from tests.factories import (
    ConversationFactory,
    MessageFactory,
    closure_payload,
    perception_payload,
    seed_conversation,
)


class TestPerceptionStage:
    @pytest.fixture
    def store(self) -> InMemoryConversationStore:
        return InMemoryConversationStore()

    @pytest.mark.asyncio
    async def test_annotates_and_persists(self, store) -> None:
        executor = MockLLMExecutor(
            responses=[perception_payload("question", sentiment="negative", language="FR")]
        )
        conversation, (message,) = await seed_conversation(store, "Où est ma commande ?")

        annotated = await PerceptionStage(executor, store).annotate(message, "org-1")

        assert annotated.intent is MessageIntent.QUESTION
        assert annotated.sentiment is Sentiment.NEGATIVE
        assert annotated.language == "fr"
        (stored,) = await store.list_messages(conversation.id)
        assert stored.intent is MessageIntent.QUESTION

    @pytest.mark.asyncio
    async def test_already_annotated_message_not_reclassified(self, store) -> None:
        executor = MockLLMExecutor()
        message = MessageFactory.annotated("c", intent=MessageIntent.GREET)

        result = await PerceptionStage(executor, store).annotate(message, "org-1")

        assert result is message
        assert executor.call_count == 0

    @pytest.mark.asyncio
    async def test_failure_raises_perception_error(self, store) -> None:
        executor = MockLLMExecutor(responses=["garbage"])
        _, (message,) = await seed_conversation(store, "hello")

        with pytest.raises(PerceptionError) as exc_info:
            await PerceptionStage(executor, store).annotate(message, "org-1")
        assert exc_info.value.stage == "perception"

    @pytest.mark.asyncio
    async def test_prompt_lists_intents(self, store) -> None:
        executor = MockLLMExecutor(responses=[perception_payload()])
        _, (message,) = await seed_conversation(store, "hello")

        await PerceptionStage(executor, store).annotate(message, "org-1")
        assert "close_satisfied" in executor.last_prompt()
        assert "hello" in executor.last_prompt()


class TestAgentSelector:
    @pytest.fixture
    def stores(self) -> tuple[InMemoryConversationStore, InMemoryOrganizationStore]:
        return InMemoryConversationStore(), InMemoryOrganizationStore()

    @pytest.mark.asyncio
    async def test_no_agents_leaves_conversation_unassigned(self, stores) -> None:
        conv_store, org_store = stores
        selector = AgentSelector(MockLLMExecutor(), conv_store, org_store)
        conversation, messages = await seed_conversation(conv_store, "hi")

        assert (await selector.assign(conversation, messages)).agent_id is None

    @pytest.mark.asyncio
    async def test_agents_without_triggers_use_first(self, stores) -> None:
        conv_store, org_store = stores
        first = Agent(organization_id="org-1", name="Ana", tone="friendly")
        await org_store.save_agent(first)
        await org_store.save_agent(Agent(organization_id="org-1", name="Bo"))
        executor = MockLLMExecutor()
        selector = AgentSelector(executor, conv_store, org_store)
        conversation, messages = await seed_conversation(conv_store, "hi")

        updated = await selector.assign(conversation, messages)

        assert updated.agent_id == first.id
        assert executor.call_count == 0
        persona = [
            m for m in await conv_store.list_messages(conversation.id)
            if m.type == MessageType.SYSTEM
        ]
        assert persona[0].metadata["kind"] == "agent_persona"
        assert "Ana" in persona[0].content
        assert "friendly" in persona[0].content

    @pytest.mark.asyncio
    async def test_trigger_scoring_picks_best_above_threshold(self, stores) -> None:
        conv_store, org_store = stores
        billing = Agent(organization_id="org-1", name="Billing", triggers=["invoices"])
        tech = Agent(organization_id="org-1", name="Tech", triggers=["bugs"])
        await org_store.save_agent(billing)
        await org_store.save_agent(tech)
        executor = MockLLMExecutor(
            responses=[
                {
                    "candidates": [
                        {"agent_id": billing.id, "score": 0.6},
                        {"agent_id": tech.id, "score": 0.95},
                    ]
                }
            ]
        )
        selector = AgentSelector(executor, conv_store, org_store)
        conversation, messages = await seed_conversation(conv_store, "the app crashes")

        assert (await selector.assign(conversation, messages)).agent_id == tech.id

    @pytest.mark.asyncio
    async def test_low_scores_fall_back_to_first_agent(self, stores) -> None:
        conv_store, org_store = stores
        billing = Agent(organization_id="org-1", name="Billing", triggers=["invoices"])
        await org_store.save_agent(billing)
        executor = MockLLMExecutor(
            responses=[{"candidates": [{"agent_id": billing.id, "score": 0.7}]}]
        )
        selector = AgentSelector(executor, conv_store, org_store)
        conversation, messages = await seed_conversation(conv_store, "hello")

        assert (await selector.assign(conversation, messages)).agent_id == billing.id

    @pytest.mark.asyncio
    async def test_existing_assignment_kept(self, stores) -> None:
        conv_store, org_store = stores
        await org_store.save_agent(Agent(organization_id="org-1", name="Ana"))
        selector = AgentSelector(MockLLMExecutor(), conv_store, org_store)
        conversation = ConversationFactory.create(agent_id="already")

        assert (await selector.assign(conversation, [])) is conversation


class TestClosureValidator:
    @pytest.mark.asyncio
    async def test_confirms_closure(self) -> None:
        executor = MockLLMExecutor(responses=[closure_payload(True)])
        decision = await ClosureValidator(executor).validate(
            [MessageFactory.customer("c", "thanks, bye")],
            MessageIntent.CLOSE_SATISFIED,
            playbook_active=False,
        )
        assert decision.should_close

    @pytest.mark.asyncio
    async def test_active_playbook_is_mentioned_in_prompt(self) -> None:
        executor = MockLLMExecutor(responses=[closure_payload(False, "answering the flow")])
        decision = await ClosureValidator(executor).validate(
            [MessageFactory.customer("c", "no")],
            MessageIntent.CLOSE_UNSATISFIED,
            playbook_active=True,
        )
        assert not decision.should_close
        assert "guided flow is currently active" in executor.last_prompt()

    @pytest.mark.asyncio
    async def test_failure_keeps_conversation_open(self) -> None:
        executor = MockLLMExecutor(responses=[ProviderError("down")])
        decision = await ClosureValidator(executor).validate(
            [MessageFactory.customer("c", "bye")],
            MessageIntent.CLOSE_SATISFIED,
            playbook_active=False,
        )
        assert not decision.should_close

    @pytest.mark.asyncio
    async def test_non_closure_intent_skips_model(self) -> None:
        executor = MockLLMExecutor()
        decision = await ClosureValidator(executor).validate([], MessageIntent.QUESTION, False)
        assert not decision.should_close
        assert executor.call_count == 0

    def test_closing_messages(self) -> None:
        assert closing_message_for(MessageIntent.CLOSE_SATISFIED) == SATISFIED_CLOSING_MESSAGE
        assert closing_message_for(MessageIntent.CLOSE_UNSATISFIED) == UNSATISFIED_CLOSING_MESSAGE


class TestTitleGenerator:
    def _messages(self) -> list:
        return [MessageFactory.customer("c", "refund please"), MessageFactory.bot("c", "Sure")]

    @pytest.mark.asyncio
    async def test_generates_clean_title(self) -> None:
        executor = MockLLMExecutor(responses=['"Refund request"\n'])
        title = await TitleGenerator(executor).generate(ConversationFactory.create(), self._messages())
        assert title == "Refund request"

    @pytest.mark.asyncio
    async def test_caps_length(self) -> None:
        executor = MockLLMExecutor(responses=["x" * 300])
        title = await TitleGenerator(executor).generate(ConversationFactory.create(), self._messages())
        assert len(title) == 255

    @pytest.mark.asyncio
    async def test_skips_existing_title_and_short_history(self) -> None:
        executor = MockLLMExecutor()
        generator = TitleGenerator(executor)
        titled = ConversationFactory.create(title="Shipping delay")

        assert await generator.generate(titled, self._messages()) is None
        assert await generator.generate(ConversationFactory.create(), self._messages()[:1]) is None
        assert executor.call_count == 0

    @pytest.mark.asyncio
    async def test_failure_returns_none(self) -> None:
        executor = MockLLMExecutor(responses=[ProviderError("down")])
        title = await TitleGenerator(executor).generate(ConversationFactory.create(), self._messages())
        assert title is None


class TestMessageTranslator:
    @pytest.mark.asyncio
    async def test_english_needs_no_call(self) -> None:
        executor = MockLLMExecutor()
        assert await MessageTranslator(executor).translate("Hello", "en") == "Hello"
        assert await MessageTranslator(executor).translate("Hello", None) == "Hello"
        assert executor.call_count == 0

    @pytest.mark.asyncio
    async def test_translates_into_language_name(self) -> None:
        executor = MockLLMExecutor(responses=["Bonjour"])
        assert await MessageTranslator(executor).translate("Hello", "fr") == "Bonjour"
        assert "French" in executor.last_prompt()

    @pytest.mark.asyncio
    async def test_failure_returns_original(self) -> None:
        executor = MockLLMExecutor(responses=[ProviderError("down")])
        assert await MessageTranslator(executor).translate("Hello", "de") == "Hello"
