"""
Webhook API routes.

Provides endpoints for submitting webhooks and inspecting their delivery.
"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from webhook_relay.exceptions import WebhookNotFoundError, WebhookValidationError
from webhook_relay.models.webhook import DeliveryAttempt, Webhook
from webhook_relay.services.webhook_service import WebhookService


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class CreateWebhookRequest(BaseModel):
    """Request model for creating a webhook. Presence is checked by the service."""
    destination_url: str | None = None
    event_type: str | None = None
    payload: Any = None


class CreateWebhookResponse(BaseModel):
    id: str
    status: str


class WebhookResponse(BaseModel):
    """Response model for a webhook."""
    id: str
    payload: str
    destination_url: str
    event_type: str
    created_at: int
    status: str
    retry_count: int
    next_retry_at: int | None = None
    last_error: str | None = None


class DeliveryResponse(BaseModel):
    """Response model for a delivery attempt."""
    id: str
    webhook_id: str
    attempt_number: int
    status: str
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    attempted_at: int


def webhook_to_response(webhook: Webhook) -> WebhookResponse:
    """Convert Webhook model to WebhookResponse."""
    return WebhookResponse(
        id=webhook.id,
        payload=webhook.payload,
        destination_url=webhook.destination_url,
        event_type=webhook.event_type,
        created_at=webhook.created_at,
        status=webhook.status.value,
        retry_count=webhook.retry_count,
        next_retry_at=webhook.next_retry_at,
        last_error=webhook.last_error,
    )


def delivery_to_response(attempt: DeliveryAttempt) -> DeliveryResponse:
    """Convert DeliveryAttempt model to DeliveryResponse."""
    return DeliveryResponse(
        id=attempt.id,
        webhook_id=attempt.webhook_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status.value,
        response_code=attempt.response_code,
        response_body=attempt.response_body,
        error_message=attempt.error_message,
        attempted_at=attempt.attempted_at,
    )


def get_webhook_service(request: Request) -> WebhookService:
    """Build the service from the store and queue wired at startup."""
    return WebhookService(request.app.state.store, request.app.state.queue)


@router.post("", response_model=CreateWebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    request: CreateWebhookRequest,
    service: WebhookService = Depends(get_webhook_service)
):
    """
    Accept a webhook for delivery.

    Returns immediately; delivery happens in the worker.
    """
    try:
        webhook = await service.create_webhook(
            destination_url=request.destination_url,
            event_type=request.event_type,
            payload=request.payload,
        )
    except WebhookValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    return CreateWebhookResponse(id=webhook.id, status=webhook.status.value)


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    service: WebhookService = Depends(get_webhook_service)
):
    """Get a webhook and its current delivery status."""
    try:
        webhook = await service.get_webhook(webhook_id)
    except WebhookNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )
    return webhook_to_response(webhook)


@router.get("/{webhook_id}/deliveries", response_model=list[DeliveryResponse])
async def get_deliveries(
    webhook_id: str,
    service: WebhookService = Depends(get_webhook_service)
):
    """List delivery attempts for a webhook, newest first."""
    try:
        attempts = await service.get_deliveries(webhook_id)
    except WebhookNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )
    return [delivery_to_response(attempt) for attempt in attempts]
