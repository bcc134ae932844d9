"""
Webhook Service

Accepts new webhooks and serves their delivery history.
"""
import json
import time
import uuid
from typing import Any, Callable

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from webhook_relay.exceptions import WebhookNotFoundError, WebhookValidationError
from webhook_relay.logging_config import get_logger
from webhook_relay.models.webhook import DeliveryAttempt, Webhook, WebhookStatus
from webhook_relay.routes.metrics import track_webhook_created
from webhook_relay.services.dispatch_queue import DispatchQueue, QueueMessage
from webhook_relay.services.record_store import RecordStore


MISSING_FIELDS_MESSAGE = "Missing required fields: destination_url, event_type, payload"
INVALID_URL_MESSAGE = "Invalid destination_url"

_url_adapter = TypeAdapter(AnyHttpUrl)


def validate_destination_url(url: str) -> None:
    """Raise WebhookValidationError unless url is an absolute http(s) URL."""
    try:
        _url_adapter.validate_python(url)
    except ValidationError as e:
        raise WebhookValidationError(INVALID_URL_MESSAGE) from e


def is_missing(payload: Any) -> bool:
    """Empty objects and arrays are present; other falsy values are missing."""
    if isinstance(payload, (dict, list)):
        return False
    return not payload


def serialize_payload(payload: Any) -> str:
    """Strings are stored verbatim; anything else is stored as JSON."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload)


class WebhookService:
    """Creation handler and read-side queries for webhooks."""

    def __init__(
        self,
        store: RecordStore,
        queue: DispatchQueue,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.queue = queue
        self.clock = clock

    async def create_webhook(
        self,
        destination_url: str | None,
        event_type: str | None,
        payload: Any,
    ) -> Webhook:
        """
        Validate input, store a pending webhook and enqueue attempt 1.

        Args:
            destination_url: Absolute URL to POST the payload to
            event_type: Caller-supplied label echoed as X-Webhook-Event
            payload: Body delivered verbatim (non-strings are JSON encoded)

        Returns:
            Newly created Webhook in PENDING status

        Raises:
            WebhookValidationError: a field is missing or the URL is malformed
        """
        if not destination_url or not event_type or is_missing(payload):
            raise WebhookValidationError(MISSING_FIELDS_MESSAGE)

        validate_destination_url(destination_url)

        webhook = Webhook(
            id=str(uuid.uuid4()),
            payload=serialize_payload(payload),
            destination_url=destination_url,
            event_type=event_type,
            created_at=int(self.clock()),
            status=WebhookStatus.PENDING,
            retry_count=0,
        )
        await self.store.insert_webhook(webhook)
        await self.queue.send(QueueMessage(webhook_id=webhook.id, attempt=1))

        track_webhook_created(event_type)
        get_logger(webhook_id=webhook.id).info(
            "webhook_created",
            event_type=event_type,
            destination_url=destination_url,
        )
        return webhook

    async def get_webhook(self, webhook_id: str) -> Webhook:
        """Get webhook by ID or raise WebhookNotFoundError."""
        webhook = await self.store.get(webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        return webhook

    async def get_deliveries(self, webhook_id: str) -> list[DeliveryAttempt]:
        """Delivery attempts for an existing webhook, newest first."""
        await self.get_webhook(webhook_id)
        return await self.store.list_attempts(webhook_id)
