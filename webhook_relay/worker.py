"""
ARQ Background Worker for Webhook Relay.

Consumes deliver_webhook jobs from the Redis queue.
Run with: arq webhook_relay.worker.WorkerSettings
"""
import httpx
from arq.connections import RedisSettings

from webhook_relay.config import settings
from webhook_relay.database import create_engine, create_session_factory
from webhook_relay.logging_config import configure_logging, get_logger
from webhook_relay.sentry_config import configure_sentry
from webhook_relay.services.delivery_worker import DeliveryWorker
from webhook_relay.services.dispatch_queue import ArqDispatchQueue, QueueMessage
from webhook_relay.services.record_store import SqlRecordStore


logger = get_logger(component="worker")


async def startup(ctx: dict) -> None:
    """Build the delivery worker with its store, queue and HTTP client."""
    configure_logging()
    configure_sentry()

    engine = create_engine(pool_pre_ping=True)
    ctx["engine"] = engine
    ctx["delivery_worker"] = DeliveryWorker(
        store=SqlRecordStore(create_session_factory(engine)),
        queue=ArqDispatchQueue(ctx["redis"]),
        http_client=httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS),
        timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS,
    )
    logger.info("worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict) -> None:
    """Release the HTTP client and database pool."""
    delivery_worker = ctx.get("delivery_worker")
    if delivery_worker is not None:
        await delivery_worker.aclose()
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()
    logger.info("worker_stopped")


async def deliver_webhook(ctx: dict, webhook_id: str, attempt: int) -> None:
    """Make one delivery attempt for a webhook."""
    job_try = ctx.get("job_try", 1)
    if job_try > 1:
        # ARQ redelivered this job after an unrecorded failure
        logger.warning("job_redelivered", webhook_id=webhook_id, attempt=attempt, job_try=job_try)

    delivery_worker: DeliveryWorker = ctx["delivery_worker"]
    await delivery_worker.process(QueueMessage(webhook_id=webhook_id, attempt=attempt))


# Register functions for ARQ
ARQ_FUNCTIONS = [
    deliver_webhook,
]


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq webhook_relay.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = settings.WORKER_JOB_TIMEOUT_SECONDS
    max_tries = settings.WORKER_MAX_TRIES
    max_jobs = settings.WORKER_MAX_JOBS
    functions = ARQ_FUNCTIONS
    on_startup = startup
    on_shutdown = shutdown
