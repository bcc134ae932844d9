"""
Record store for webhooks and their delivery attempts.

Each call opens its own session and commits on its own, so an attempt
insert and the following webhook update are two independent writes.
Any SQLAlchemy failure surfaces as StoreError.
"""
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webhook_relay.exceptions import StoreError
from webhook_relay.models.webhook import DeliveryAttempt, Webhook, WebhookStatus


# Webhook fields the delivery worker may change besides status.
UPDATABLE_FIELDS = frozenset({"retry_count", "next_retry_at", "last_error"})


class RecordStore(Protocol):
    """Storage operations used by the delivery worker and creation handler."""

    async def get(self, webhook_id: str) -> Webhook | None: ...

    async def update_status(
        self, webhook_id: str, status: WebhookStatus, **fields
    ) -> None: ...

    async def insert_attempt(self, attempt: DeliveryAttempt) -> None: ...

    async def insert_webhook(self, webhook: Webhook) -> None: ...

    async def list_attempts(self, webhook_id: str) -> list[DeliveryAttempt]: ...


class SqlRecordStore:
    """RecordStore backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, webhook_id: str) -> Webhook | None:
        """Get webhook by ID, or None if it does not exist."""
        try:
            async with self.session_factory() as db:
                stmt = select(Webhook).where(Webhook.id == webhook_id)
                result = await db.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load webhook {webhook_id}: {e}") from e

    async def update_status(
        self, webhook_id: str, status: WebhookStatus, **fields
    ) -> None:
        """
        Partially update a webhook's status fields.

        Args:
            webhook_id: Webhook ID
            status: New status
            **fields: Any of retry_count, next_retry_at, last_error.
                Passing None clears the column.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update webhook fields: {sorted(unknown)}")

        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(Webhook)
                    .where(Webhook.id == webhook_id)
                    .values(status=status, **fields)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update webhook {webhook_id}: {e}") from e

    async def insert_attempt(self, attempt: DeliveryAttempt) -> None:
        """Append a delivery attempt."""
        try:
            async with self.session_factory() as db:
                db.add(attempt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to record attempt {attempt.attempt_number} "
                f"for webhook {attempt.webhook_id}: {e}"
            ) from e

    async def insert_webhook(self, webhook: Webhook) -> None:
        """Insert a newly accepted webhook."""
        try:
            async with self.session_factory() as db:
                db.add(webhook)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to insert webhook {webhook.id}: {e}") from e

    async def list_attempts(self, webhook_id: str) -> list[DeliveryAttempt]:
        """Delivery history for a webhook, newest attempt first."""
        try:
            async with self.session_factory() as db:
                stmt = (
                    select(DeliveryAttempt)
                    .where(DeliveryAttempt.webhook_id == webhook_id)
                    .order_by(
                        DeliveryAttempt.attempt_number.desc(),
                        DeliveryAttempt.attempted_at.desc(),
                    )
                )
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list attempts for webhook {webhook_id}: {e}") from e
