"""Perception stage: classifies the latest customer message."""

from pydantic import BaseModel, Field

from supportflow.domain import Message, MessageIntent, Sentiment
from supportflow.errors import PerceptionError
from supportflow.observability.logging import get_logger
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, ProviderError
from supportflow.stores import ConversationStore

logger = get_logger(__name__)


class IntentLabel(BaseModel):
    label: MessageIntent
    score: float = Field(ge=0.0, le=1.0)


class SentimentLabel(BaseModel):
    label: Sentiment
    score: float = Field(ge=0.0, le=1.0)


class PerceptionOutput(BaseModel):
    """Schema the classifier must answer with."""

    intent: IntentLabel
    sentiment: SentimentLabel
    language: str = Field(
        default="en",
        min_length=2,
        max_length=8,
        description="ISO 639-1 code of the customer's language",
    )


class PerceptionStage:
    """Classifies intent, sentiment and language of a customer message.

    Annotations are written once: a message that already carries an intent
    is returned unchanged without calling the model.
    """

    def __init__(
        self,
        executor: LLMExecutor,
        conversation_store: ConversationStore,
        templates: TemplateLoader | None = None,
    ) -> None:
        self._executor = executor
        self._conversation_store = conversation_store
        self._templates = templates or get_template_loader()

    async def classify(self, message: Message, organization_id: str) -> PerceptionOutput:
        """Run the classifier on one message.

        Raises:
            PerceptionError: If the model failed or broke the schema
        """
        prompt = self._templates.render(
            "perception.jinja2",
            message=message.content,
            intents=[i.value for i in MessageIntent],
            sentiments=[s.value for s in Sentiment],
        )
        try:
            output, _ = await self._executor.generate_structured(
                prompt=prompt,
                schema=PerceptionOutput,
            )
        except ProviderError as e:
            logger.warning(
                "perception_failed",
                organization_id=organization_id,
                message_id=message.id,
                error=str(e),
            )
            raise PerceptionError(str(e)) from e
        return output

    async def annotate(self, message: Message, organization_id: str) -> Message:
        """Classify the message and persist the annotations onto it."""
        if message.is_annotated:
            return message

        output = await self.classify(message, organization_id)
        annotated = message.model_copy(
            update={
                "intent": output.intent.label,
                "intent_score": output.intent.score,
                "sentiment": output.sentiment.label,
                "sentiment_score": output.sentiment.score,
                "language": output.language.lower(),
            }
        )
        await self._conversation_store.update_message(annotated)

        logger.info(
            "message_perceived",
            message_id=message.id,
            intent=output.intent.label.value,
            intent_score=output.intent.score,
            sentiment=output.sentiment.label.value,
            language=annotated.language,
        )
        return annotated
