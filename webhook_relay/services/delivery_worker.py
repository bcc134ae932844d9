"""
Delivery Worker

Consumes dispatch queue messages and drives each webhook through
pending -> processing -> delivered | retrying | failed.

The only duplicate guard is the read-then-act check that skips webhooks
already marked delivered. Two concurrent deliveries of the same message
can therefore both call the destination and both record an attempt; the
receiver deduplicates on X-Webhook-ID. Webhook rows are never locked and
concurrent status writes are last-writer-wins.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Iterable

import httpx

from webhook_relay.config import settings
from webhook_relay.logging_config import get_logger
from webhook_relay.models.webhook import (
    DeliveryAttempt,
    DeliveryStatus,
    Webhook,
    WebhookStatus,
)
from webhook_relay.routes.metrics import (
    track_delivery_attempt,
    track_webhook_delivered,
    track_webhook_failed,
    track_webhook_retry,
)
from webhook_relay.sentry_config import capture_exception
from webhook_relay.services.backoff import is_terminal, next_delay
from webhook_relay.services.dispatch_queue import DispatchQueue, QueueMessage
from webhook_relay.services.record_store import RecordStore


ERROR_BODY_PREVIEW_CHARS = 500
UNKNOWN_ERROR = "Unknown error"


@dataclass
class DeliveryResult:
    """Classified outcome of one outbound call."""
    success: bool
    response_code: int | None = None
    response_body: str | None = None
    error: str | None = None


class DeliveryWorker:
    """
    Performs delivery attempts for queued webhook messages.

    Store, queue and HTTP client are injected; the worker holds no other
    shared state.
    """

    def __init__(
        self,
        store: RecordStore,
        queue: DispatchQueue,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.queue = queue
        self.timeout_seconds = timeout_seconds or settings.WEBHOOK_TIMEOUT_SECONDS
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout_seconds)
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    async def process_batch(self, messages: Iterable[QueueMessage]) -> None:
        """Process a batch of messages one after another."""
        for message in messages:
            await self.process(message)

    async def process(self, message: QueueMessage) -> None:
        """
        Run one delivery attempt for a queue message.

        Delivery failures never raise. Unexpected errors are recorded as a
        failed attempt and follow the same retry branching; they propagate
        only if recording them fails too.
        """
        webhook_id = message.webhook_id
        attempt = message.attempt
        log = get_logger(webhook_id=webhook_id, attempt=attempt)
        now = self.now()

        try:
            webhook = await self.store.get(webhook_id)
            if webhook is None or webhook.status == WebhookStatus.DELIVERED:
                log.info(
                    "webhook_skipped",
                    reason="not_found" if webhook is None else "already_delivered",
                )
                return

            await self.store.update_status(
                webhook_id, WebhookStatus.PROCESSING, last_error=None
            )

            result = await self.send(webhook, attempt)

            await self.store.insert_attempt(DeliveryAttempt(
                webhook_id=webhook_id,
                attempt_number=attempt,
                status=DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED,
                response_code=result.response_code,
                response_body=result.response_body,
                error_message=result.error,
                attempted_at=now,
            ))

            if result.success:
                await self.store.update_status(
                    webhook_id,
                    WebhookStatus.DELIVERED,
                    retry_count=attempt,
                    next_retry_at=None,
                )
                track_webhook_delivered()
                log.info("webhook_delivered", response_code=result.response_code)
            else:
                await self.handle_failure(webhook_id, attempt, result.error, log)

        except Exception as e:
            error = str(e) or UNKNOWN_ERROR
            log.error("webhook_delivery_error", error=error, exc_info=True)
            capture_exception(e)
            track_delivery_attempt(DeliveryStatus.FAILED.value)

            await self.store.insert_attempt(DeliveryAttempt(
                webhook_id=webhook_id,
                attempt_number=attempt,
                status=DeliveryStatus.FAILED,
                error_message=error,
                attempted_at=now,
            ))
            await self.handle_failure(webhook_id, attempt, error, log)

    async def handle_failure(self, webhook_id: str, attempt: int, error: str | None, log) -> None:
        """Mark the webhook failed, or schedule the next attempt."""
        if is_terminal(attempt):
            await self.store.update_status(
                webhook_id,
                WebhookStatus.FAILED,
                retry_count=attempt,
                next_retry_at=None,
                last_error=error,
            )
            track_webhook_failed()
            log.warning("webhook_failed", error=error)
            return

        delay_seconds = next_delay(attempt)
        next_retry_at = self.now() + delay_seconds
        await self.store.update_status(
            webhook_id,
            WebhookStatus.RETRYING,
            retry_count=attempt,
            next_retry_at=next_retry_at,
            last_error=error,
        )
        await self.queue.send(
            QueueMessage(webhook_id=webhook_id, attempt=attempt + 1),
            delay_seconds=delay_seconds,
        )
        track_webhook_retry()
        log.info(
            "webhook_retry_scheduled",
            error=error,
            delay_seconds=delay_seconds,
            next_retry_at=next_retry_at,
        )

    async def send(self, webhook: Webhook, attempt: int) -> DeliveryResult:
        """POST the payload to the destination and classify the outcome."""
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-ID": webhook.id,
            "X-Webhook-Event": webhook.event_type,
            "X-Webhook-Attempt": str(attempt),
        }

        started = time.monotonic()
        try:
            # httpx timeouts are per phase; wait_for bounds the whole call
            response = await asyncio.wait_for(
                self.http_client.post(
                    webhook.destination_url,
                    content=webhook.payload,
                    headers=headers,
                    timeout=self.timeout_seconds,
                ),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            error = f"Request timed out after {self.timeout_seconds:g}s"
            if str(e):
                error = f"{error}: {e}"
            result = DeliveryResult(success=False, error=error)
        except Exception as e:
            result = DeliveryResult(success=False, error=str(e) or UNKNOWN_ERROR)
        else:
            body = response.text
            if 200 <= response.status_code < 300:
                result = DeliveryResult(
                    success=True,
                    response_code=response.status_code,
                    response_body=body,
                )
            else:
                result = DeliveryResult(
                    success=False,
                    response_code=response.status_code,
                    response_body=body,
                    error=f"HTTP {response.status_code}: {body[:ERROR_BODY_PREVIEW_CHARS]}",
                )

        status = DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED
        track_delivery_attempt(status.value, time.monotonic() - started)
        return result

    async def aclose(self) -> None:
        await self.http_client.aclose()
