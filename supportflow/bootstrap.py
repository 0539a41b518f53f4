"""Bootstrap module for quick SupportFlow setup.

Builds the engine and scheduler from configuration with in-memory stores,
primarily for notebooks, demos and tests.

Example usage:

    from supportflow.bootstrap import bootstrap

    engine, ctx = bootstrap()

    await ctx.conversation_store.save(Conversation(organization_id=ctx.organization_id))
    ...
    summary = await ctx.scheduler.tick()
"""

from dataclasses import dataclass
from uuid import uuid4

from redis.asyncio import Redis

from supportflow.config import get_settings
from supportflow.config.settings import Settings
from supportflow.observability.logging import get_logger, setup_logging
from supportflow.observability.metrics import start_metrics_server
from supportflow.orchestration.engine import OrchestrationEngine
from supportflow.orchestration.notifier import (
    LoggingStatusNotifier,
    RedisStatusNotifier,
    StatusNotifier,
)
from supportflow.orchestration.scheduler import OrchestratorScheduler
from supportflow.orchestration.tools import RegistryToolExecutor
from supportflow.providers.search import InMemorySimilaritySearch
from supportflow.stores import InMemoryConversationStore, InMemoryOrganizationStore

logger = get_logger(__name__)


@dataclass
class BootstrapContext:
    """Stores and collaborators created by bootstrap, for direct access."""

    organization_id: str
    conversation_store: InMemoryConversationStore
    organization_store: InMemoryOrganizationStore
    search: InMemorySimilaritySearch
    tools: RegistryToolExecutor
    notifier: StatusNotifier
    scheduler: OrchestratorScheduler
    settings: Settings


def create_notifier(settings: Settings) -> StatusNotifier:
    if settings.notifier.backend == "redis":
        return RedisStatusNotifier(
            Redis.from_url(settings.notifier.redis_url),
            channel=settings.notifier.channel,
        )
    return LoggingStatusNotifier()


def bootstrap(
    organization_id: str | None = None,
    settings: Settings | None = None,
    configure_logging: bool = True,
    serve_metrics: bool = False,
) -> tuple[OrchestrationEngine, BootstrapContext]:
    """Build a fully wired OrchestrationEngine.

    Args:
        organization_id: Organization to seed (default: random id)
        settings: Settings to use (default: loaded from config files)
        configure_logging: Whether to call setup_logging from settings
        serve_metrics: Whether to start the Prometheus endpoint when metrics
            are enabled in settings

    Returns:
        Tuple of (engine, context)
    """
    settings = settings or get_settings()
    if configure_logging:
        log_cfg = settings.observability.logging
        setup_logging(level=log_cfg.level, format=log_cfg.format, redact_pii=log_cfg.redact_pii)
    if serve_metrics and settings.observability.metrics.enabled:
        start_metrics_server(settings.observability.metrics.port)

    conversation_store = InMemoryConversationStore()
    organization_store = InMemoryOrganizationStore()
    search = InMemorySimilaritySearch()
    tools = RegistryToolExecutor()
    notifier = create_notifier(settings)

    engine = OrchestrationEngine(
        conversation_store=conversation_store,
        organization_store=organization_store,
        search=search,
        tool_executor=tools,
        notifier=notifier,
        settings=settings,
    )
    scheduler = OrchestratorScheduler(
        engine,
        conversation_store,
        interval_seconds=settings.scheduler.interval_seconds,
        batch_size=settings.scheduler.batch_size,
        max_concurrency=settings.scheduler.max_concurrency,
    )

    ctx = BootstrapContext(
        organization_id=organization_id or str(uuid4()),
        conversation_store=conversation_store,
        organization_store=organization_store,
        search=search,
        tools=tools,
        notifier=notifier,
        scheduler=scheduler,
        settings=settings,
    )
    logger.info(
        "bootstrap_complete",
        organization_id=ctx.organization_id,
        notifier=settings.notifier.backend,
        planner_model=settings.providers.planner.model,
    )
    return engine, ctx
