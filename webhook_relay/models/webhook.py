"""
Webhook and delivery attempt models.

A Webhook row is written once by the creation handler; afterwards only the
delivery worker touches its status fields. DeliveryAttempt rows are
append-only and never updated.
"""
import uuid
import enum
from sqlalchemy import String, Text, Integer, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from webhook_relay.models.base import Base, epoch_seconds


class WebhookStatus(str, enum.Enum):
    """Webhook lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"


class DeliveryStatus(str, enum.Enum):
    """Outcome of a single delivery attempt."""
    SUCCESS = "success"
    FAILED = "failed"


class Webhook(Base):
    """
    An accepted event destined for an external URL.

    Timestamps are integer epoch seconds.
    """
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=epoch_seconds)
    status: Mapped[WebhookStatus] = mapped_column(
        SQLEnum(WebhookStatus, native_enum=False, length=20,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=WebhookStatus.PENDING
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_webhooks_status", "status"),
    )

    def __repr__(self):
        return f"<Webhook(id={self.id}, event_type={self.event_type}, status={self.status})>"


class DeliveryAttempt(Base):
    """One outbound call to a webhook destination and its recorded outcome."""
    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    webhook_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(DeliveryStatus, native_enum=False, length=20,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[int] = mapped_column(Integer, nullable=False, default=epoch_seconds)

    def __repr__(self):
        return (
            f"<DeliveryAttempt(webhook_id={self.webhook_id}, "
            f"attempt={self.attempt_number}, status={self.status})>"
        )
