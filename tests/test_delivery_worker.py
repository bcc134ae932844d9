"""Tests for the delivery worker state machine."""
import asyncio
import time

import httpx
import pytest

from webhook_relay.exceptions import StoreError
from webhook_relay.models.webhook import DeliveryStatus, Webhook, WebhookStatus
from webhook_relay.services.delivery_worker import DeliveryWorker
from webhook_relay.services.dispatch_queue import QueueMessage

from conftest import START_TIME


def respond(status_code: int, text: str = "ok"):
    """Handler that always answers with the same response and counts calls."""
    def handler(request: httpx.Request) -> httpx.Response:
        handler.requests.append(request)
        return httpx.Response(status_code, text=text)
    handler.requests = []
    return handler


async def drain(worker, queue):
    """Process queued messages until the queue is empty."""
    while queue.sent:
        message, _ = queue.pop()
        await worker.process(message)


class TestSuccessfulDelivery:

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, make_worker, store, queue, webhook):
        """A 200 on the first attempt delivers with exactly one success attempt."""
        seen_statuses = []

        async def handler(request: httpx.Request) -> httpx.Response:
            current = await store.get(webhook.id)
            seen_statuses.append(current.status)
            return httpx.Response(200, text="received")

        worker = make_worker(handler)
        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        assert seen_statuses == [WebhookStatus.PROCESSING]

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.DELIVERED
        assert stored.retry_count == 1
        assert stored.last_error is None
        assert stored.next_retry_at is None

        attempts = await store.list_attempts(webhook.id)
        assert len(attempts) == 1
        assert attempts[0].status == DeliveryStatus.SUCCESS
        assert attempts[0].attempt_number == 1
        assert attempts[0].response_code == 200
        assert attempts[0].response_body == "received"
        assert attempts[0].error_message is None
        assert attempts[0].attempted_at == START_TIME
        assert queue.sent == []

    @pytest.mark.asyncio
    async def test_request_shape(self, make_worker, webhook):
        """The payload is POSTed verbatim with the delivery headers."""
        handler = respond(204)
        worker = make_worker(handler)

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=3))

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == webhook.destination_url
        assert request.content == webhook.payload.encode()
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-ID"] == webhook.id
        assert request.headers["X-Webhook-Event"] == "order.paid"
        assert request.headers["X-Webhook-Attempt"] == "3"

    @pytest.mark.asyncio
    async def test_success_after_retry_clears_error(self, make_worker, store, queue, clock, webhook):
        responses = iter([httpx.Response(500, text="boom"), httpx.Response(200, text="ok")])
        worker = make_worker(lambda request: next(responses))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))
        clock.advance(120)
        await drain(worker, queue)

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.DELIVERED
        assert stored.retry_count == 2
        assert stored.last_error is None
        assert stored.next_retry_at is None

        attempts = await store.list_attempts(webhook.id)
        assert [a.attempt_number for a in attempts] == [2, 1]
        assert [a.status for a in attempts] == [DeliveryStatus.SUCCESS, DeliveryStatus.FAILED]


class TestFailedDelivery:

    @pytest.mark.asyncio
    async def test_non_2xx_schedules_retry(self, make_worker, store, queue, webhook):
        worker = make_worker(respond(500, text="internal error"))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.RETRYING
        assert stored.retry_count == 1
        assert stored.next_retry_at == START_TIME + 120
        assert stored.last_error == "HTTP 500: internal error"

        attempts = await store.list_attempts(webhook.id)
        assert len(attempts) == 1
        assert attempts[0].status == DeliveryStatus.FAILED
        assert attempts[0].response_code == 500
        assert attempts[0].response_body == "internal error"
        assert attempts[0].error_message == "HTTP 500: internal error"

        assert queue.sent == [(QueueMessage(webhook_id=webhook.id, attempt=2), 120)]

    @pytest.mark.asyncio
    async def test_error_message_truncates_body(self, make_worker, store, webhook):
        body = "x" * 1200
        worker = make_worker(respond(503, text=body))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        attempts = await store.list_attempts(webhook.id)
        assert attempts[0].error_message == "HTTP 503: " + "x" * 500
        assert attempts[0].response_body == body

    @pytest.mark.asyncio
    async def test_always_500_fails_after_five_attempts(self, make_worker, store, queue, clock, webhook):
        handler = respond(500, text="down")
        worker = make_worker(handler)

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))
        delays = []
        while queue.sent:
            message, delay = queue.pop()
            delays.append(delay)
            clock.advance(delay)
            await worker.process(message)

        assert delays == [120, 240, 480, 960]
        assert len(handler.requests) == 5

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.FAILED
        assert stored.retry_count == 5
        assert "HTTP 500" in stored.last_error
        assert stored.next_retry_at is None

        attempts = await store.list_attempts(webhook.id)
        assert sorted(a.attempt_number for a in attempts) == [1, 2, 3, 4, 5]
        assert all(a.status == DeliveryStatus.FAILED for a in attempts)
        assert stored.retry_count == max(a.attempt_number for a in attempts)

    @pytest.mark.asyncio
    async def test_timeout_is_recorded_and_retried(self, make_worker, store, queue, webhook):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        worker = make_worker(handler)
        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=2))

        attempts = await store.list_attempts(webhook.id)
        assert len(attempts) == 1
        assert attempts[0].status == DeliveryStatus.FAILED
        assert attempts[0].response_code is None
        assert attempts[0].response_body is None
        assert attempts[0].error_message.startswith("Request timed out after 30s")

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.RETRYING
        assert stored.next_retry_at == START_TIME + 240
        assert queue.sent == [(QueueMessage(webhook_id=webhook.id, attempt=3), 240)]

    @pytest.mark.asyncio
    async def test_network_error_message(self, make_worker, store, webhook):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        worker = make_worker(handler)
        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        stored = await store.get(webhook.id)
        assert stored.last_error == "connection refused"

    @pytest.mark.asyncio
    async def test_empty_exception_text_becomes_unknown_error(self, make_worker, store, webhook):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("", request=request)

        worker = make_worker(handler)
        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        stored = await store.get(webhook.id)
        assert stored.last_error == "Unknown error"


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_redelivery_of_delivered_webhook_is_discarded(self, make_worker, store, queue, webhook):
        handler = respond(200)
        worker = make_worker(handler)
        message = QueueMessage(webhook_id=webhook.id, attempt=1)

        await worker.process(message)
        await worker.process(message)

        assert len(handler.requests) == 1
        assert len(await store.list_attempts(webhook.id)) == 1
        assert (await store.get(webhook.id)).status == WebhookStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_unknown_webhook_is_discarded(self, make_worker, store, queue):
        handler = respond(200)
        worker = make_worker(handler)

        await worker.process(QueueMessage(webhook_id="does-not-exist", attempt=1))

        assert handler.requests == []
        assert await store.list_attempts("does-not-exist") == []
        assert queue.sent == []

    @pytest.mark.asyncio
    async def test_failed_webhook_is_not_guarded(self, make_worker, store, webhook):
        """Only `delivered` short-circuits; a stray message for a failed webhook is attempted."""
        await store.update_status(webhook.id, WebhookStatus.FAILED, retry_count=5)
        worker = make_worker(respond(200))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=5))

        assert (await store.get(webhook.id)).status == WebhookStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_process_batch_runs_sequentially(self, make_worker, store, webhook):
        handler = respond(200)
        worker = make_worker(handler)
        message = QueueMessage(webhook_id=webhook.id, attempt=1)

        await worker.process_batch([message, message])

        assert len(handler.requests) == 1


class FlakyStore:
    """Wraps a store and fails the first `failures` get() calls."""

    def __init__(self, store, failures: int = 1):
        self.store = store
        self.failures = failures

    async def get(self, webhook_id):
        if self.failures:
            self.failures -= 1
            raise StoreError("database is locked")
        return await self.store.get(webhook_id)

    def __getattr__(self, name):
        return getattr(self.store, name)


class TestStorageFailure:

    @pytest.mark.asyncio
    async def test_load_failure_degrades_to_retry(self, make_worker, store, queue, webhook):
        handler = respond(200)
        worker = make_worker(handler, worker_store=FlakyStore(store))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        assert handler.requests == []
        attempts = await store.list_attempts(webhook.id)
        assert len(attempts) == 1
        assert attempts[0].status == DeliveryStatus.FAILED
        assert attempts[0].error_message == "database is locked"

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.RETRYING
        assert stored.retry_count == 1
        assert stored.last_error == "database is locked"
        assert queue.sent == [(QueueMessage(webhook_id=webhook.id, attempt=2), 120)]

        # The retry goes through once storage recovers
        message, _ = queue.pop()
        await worker.process(message)
        assert (await store.get(webhook.id)).status == WebhookStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_load_failure_on_last_attempt_is_terminal(self, make_worker, store, queue, webhook):
        worker = make_worker(respond(200), worker_store=FlakyStore(store))

        await worker.process(QueueMessage(webhook_id=webhook.id, attempt=5))

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.FAILED
        assert stored.retry_count == 5
        assert stored.last_error == "database is locked"
        assert queue.sent == []

    @pytest.mark.asyncio
    async def test_queue_failure_is_recorded(self, make_worker, store, webhook):
        """If re-enqueueing fails the fallback path retries the send and then propagates."""

        class BrokenQueue:
            async def send(self, message, delay_seconds=None):
                raise ConnectionError("redis unavailable")

        worker = make_worker(respond(500))
        worker.queue = BrokenQueue()

        with pytest.raises(ConnectionError):
            await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))

        attempts = await store.list_attempts(webhook.id)
        assert sorted(a.error_message for a in attempts) == ["HTTP 500: ok", "redis unavailable"]
        assert (await store.get(webhook.id)).status == WebhookStatus.RETRYING


class TestTotalTimeout:

    @pytest.mark.asyncio
    async def test_slow_trickling_destination_is_cut_off(self, store, queue, clock):
        """A destination that keeps sending bytes is aborted at the overall bound."""

        async def trickle(reader, writer):
            await reader.read(65536)
            writer.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: text/plain\r\n"
                b"Content-Length: 8\r\n\r\n"
            )
            try:
                await writer.drain()
                for _ in range(8):
                    await asyncio.sleep(0.25)
                    writer.write(b"x")
                    await writer.drain()
            except ConnectionError:
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(trickle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        webhook = Webhook(
            id="wh-slow-0001",
            payload="{}",
            destination_url=f"http://127.0.0.1:{port}/hooks",
            event_type="order.paid",
            created_at=int(clock()),
            status=WebhookStatus.PENDING,
            retry_count=0,
        )
        await store.insert_webhook(webhook)

        worker = DeliveryWorker(
            store=store,
            queue=queue,
            http_client=httpx.AsyncClient(trust_env=False),
            timeout_seconds=0.5,
            clock=clock,
        )
        try:
            started = time.monotonic()
            await worker.process(QueueMessage(webhook_id=webhook.id, attempt=1))
            elapsed = time.monotonic() - started
        finally:
            await worker.aclose()
            server.close()
            await server.wait_closed()

        assert elapsed < 1.5

        attempts = await store.list_attempts(webhook.id)
        assert len(attempts) == 1
        assert attempts[0].status == DeliveryStatus.FAILED
        assert attempts[0].error_message.startswith("Request timed out after 0.5s")

        stored = await store.get(webhook.id)
        assert stored.status == WebhookStatus.RETRYING
        assert queue.sent == [(QueueMessage(webhook_id=webhook.id, attempt=2), 120)]
