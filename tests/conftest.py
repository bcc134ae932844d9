"""Test fixtures and configuration."""
import os

# Point settings at SQLite before any webhook_relay module builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SENTRY_DSN", "")

from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from webhook_relay.database import create_session_factory
from webhook_relay.models.base import Base
from webhook_relay.models.webhook import Webhook, WebhookStatus
from webhook_relay.services.delivery_worker import DeliveryWorker
from webhook_relay.services.dispatch_queue import QueueMessage
from webhook_relay.services.record_store import SqlRecordStore


START_TIME = 1_700_000_000


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingQueue:
    """In-memory DispatchQueue that keeps every sent message."""

    def __init__(self):
        self.sent: list[tuple[QueueMessage, int | None]] = []

    async def send(self, message: QueueMessage, delay_seconds: int | None = None) -> None:
        self.sent.append((message, delay_seconds))

    def pop(self) -> tuple[QueueMessage, int | None]:
        return self.sent.pop(0)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared across connections."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> SqlRecordStore:
    return SqlRecordStore(session_factory)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def make_worker(store, queue, clock):
    """Build a DeliveryWorker whose destination is served by `handler`."""
    workers: list[DeliveryWorker] = []

    def factory(handler: Callable, worker_store=None) -> DeliveryWorker:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        worker = DeliveryWorker(
            store=worker_store or store,
            queue=queue,
            http_client=client,
            timeout_seconds=30,
            clock=clock,
        )
        workers.append(worker)
        return worker

    yield factory

    for worker in workers:
        await worker.aclose()


@pytest_asyncio.fixture
async def webhook(store, clock) -> Webhook:
    """A pending webhook as written by the creation handler."""
    webhook = Webhook(
        id="wh-test-0001",
        payload='{"order_id": 42, "state": "paid"}',
        destination_url="https://receiver.example.com/hooks",
        event_type="order.paid",
        created_at=int(clock()),
        status=WebhookStatus.PENDING,
        retry_count=0,
    )
    await store.insert_webhook(webhook)
    return webhook
