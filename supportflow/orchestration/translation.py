"""Translation of canned messages into the customer's language."""

from supportflow.observability.logging import get_logger
from supportflow.orchestration.planner import language_name
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, LLMMessage, ProviderError

logger = get_logger(__name__)


class MessageTranslator:
    """Translates fallback and handoff messages.

    English needs no call. Failures return the original text.
    """

    def __init__(self, executor: LLMExecutor, templates: TemplateLoader | None = None) -> None:
        self._executor = executor
        self._templates = templates or get_template_loader()

    async def translate(self, text: str, language: str | None) -> str:
        if not language or language.lower() == "en":
            return text

        prompt = self._templates.render(
            "translation.jinja2",
            text=text,
            language=language_name(language),
        )
        try:
            response = await self._executor.generate(
                [LLMMessage(role="user", content=prompt)],
                temperature=0.0,
            )
        except ProviderError as e:
            logger.warning("translation_failed", language=language, error=str(e))
            return text

        translated = response.content.strip()
        return translated or text
