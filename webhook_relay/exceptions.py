"""Exceptions raised by the webhook relay services."""


class WebhookRelayError(Exception):
    """Base exception for the webhook relay."""


class StoreError(WebhookRelayError):
    """Raised when the record store fails to read or write."""


class WebhookValidationError(WebhookRelayError):
    """Raised when a webhook creation request is malformed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class WebhookNotFoundError(WebhookRelayError):
    """Raised when a webhook id does not exist."""

    def __init__(self, webhook_id: str):
        self.webhook_id = webhook_id
        super().__init__(f"Webhook '{webhook_id}' not found")
