"""Conversation status-change notifications."""

from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime

from pydantic import BaseModel, Field
from redis.asyncio import Redis

from supportflow.domain import ConversationStatus
from supportflow.domain.message import utc_now
from supportflow.observability.logging import get_logger

logger = get_logger(__name__)


class StatusChange(BaseModel):
    """A conversation moved to a new status."""

    conversation_id: str
    organization_id: str
    status: ConversationStatus
    previous_status: ConversationStatus | None = None
    reason: str | None = None
    title: str | None = None
    at: datetime = Field(default_factory=utc_now)


class StatusNotifier(ABC):
    """Publishes status changes to interested listeners.

    Delivery is fire-and-forget: ``notify`` logs failures instead of
    raising so a broken listener never fails a processing pass.
    """

    @abstractmethod
    async def publish(self, change: StatusChange) -> None:
        pass

    async def notify(self, change: StatusChange) -> None:
        try:
            await self.publish(change)
        except Exception as e:
            logger.warning(
                "status_notification_failed",
                conversation_id=change.conversation_id,
                status=change.status.value,
                error=str(e),
            )


class LoggingStatusNotifier(StatusNotifier):
    """Writes status changes to the log.

    The most recent ``keep`` changes stay in ``published`` for inspection.
    """

    def __init__(self, keep: int = 100) -> None:
        self.published: deque[StatusChange] = deque(maxlen=keep)

    async def publish(self, change: StatusChange) -> None:
        self.published.append(change)
        logger.info(
            "conversation_status_changed",
            conversation_id=change.conversation_id,
            status=change.status.value,
            previous_status=change.previous_status.value if change.previous_status else None,
            reason=change.reason,
            title=change.title,
        )


class RedisStatusNotifier(StatusNotifier):
    """Publishes status changes as JSON on a Redis pub/sub channel."""

    def __init__(self, redis: Redis, channel: str = "supportflow:conversation-status") -> None:
        self._redis = redis
        self._channel = channel

    async def publish(self, change: StatusChange) -> None:
        receivers = await self._redis.publish(self._channel, change.model_dump_json())
        logger.debug(
            "status_change_published",
            channel=self._channel,
            conversation_id=change.conversation_id,
            receivers=receivers,
        )
