"""
Dispatch queue for delivery work.

Messages are handed to the delivery worker at least once, optionally after
a delay. The production adapter enqueues ARQ jobs on Redis.
"""
from typing import Protocol

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel, Field

from webhook_relay.config import settings
from webhook_relay.logging_config import get_logger


DELIVER_WEBHOOK_FUNCTION = "deliver_webhook"

logger = get_logger(component="dispatch_queue")


class QueueMessage(BaseModel):
    """A request to make delivery attempt `attempt` for a webhook."""
    webhook_id: str
    attempt: int = Field(ge=1)


class DispatchQueue(Protocol):
    """At-least-once message channel feeding the delivery worker."""

    async def send(self, message: QueueMessage, delay_seconds: int | None = None) -> None: ...


class ArqDispatchQueue:
    """DispatchQueue that enqueues `deliver_webhook` jobs through ARQ."""

    def __init__(self, redis: ArqRedis):
        self.redis = redis

    async def send(self, message: QueueMessage, delay_seconds: int | None = None) -> None:
        """
        Enqueue a delivery message.

        Args:
            message: Webhook ID and attempt number
            delay_seconds: Defer delivery by this many seconds; None means
                as soon as possible
        """
        await self.redis.enqueue_job(
            DELIVER_WEBHOOK_FUNCTION,
            message.webhook_id,
            message.attempt,
            _defer_by=delay_seconds,
        )
        logger.info(
            "webhook_enqueued",
            webhook_id=message.webhook_id,
            attempt=message.attempt,
            delay_seconds=delay_seconds,
        )

    async def close(self) -> None:
        await self.redis.close()


async def create_dispatch_queue(redis_url: str | None = None) -> ArqDispatchQueue:
    """Open an ARQ Redis pool and wrap it as a dispatch queue."""
    redis = await create_pool(RedisSettings.from_dsn(redis_url or settings.REDIS_URL))
    return ArqDispatchQueue(redis)
