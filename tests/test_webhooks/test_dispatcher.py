"""Tests for webhook dispatcher module."""

import json
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import UUID

import httpx
import pytest

from budstack.webhooks.dispatcher import WebhookDispatcher
from budstack.webhooks.events import WebhookEventType
from budstack.webhooks.manager import WebhookManager
from budstack.webhooks.security import EVENT_HEADER, SIGNATURE_HEADER, verify_signature
from budstack.webhooks.store import InMemoryWebhookStore

# ============================================================================
# Fixtures
# ============================================================================


class Receiver:
    """Records requests and answers with a scripted status."""

    def __init__(self, status_code: int = 200, text: str = "ok") -> None:
        self.status_code = status_code
        self.text = text
        self.error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)


@pytest.fixture
def store():
    """Create an in-memory store."""
    return InMemoryWebhookStore()


@pytest.fixture
def manager(store):
    """Create test webhook manager."""
    return WebhookManager(store)


@pytest.fixture
def receiver():
    """Create a receiver that accepts everything."""
    return Receiver()


@pytest.fixture
async def dispatcher(manager, receiver):
    """Create test webhook dispatcher with a mocked transport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
    dispatcher = WebhookDispatcher(
        manager,
        http_client=client,
        max_attempts=3,
        retry_base_seconds=1.0,
        user_agent="BudStack-Webhooks/1.0",
    )
    yield dispatcher
    await dispatcher.shutdown(cancel_pending=True)
    await client.aclose()


@pytest.fixture
async def sample_webhook(manager):
    """Create a sample tenant webhook."""
    return await manager.register(
        "https://example.com/webhook",
        [WebhookEventType.ORDER_CREATED],
        tenant_id="tenant-a",
    )


# ============================================================================
# Success Path Tests
# ============================================================================


class TestSuccessfulDelivery:
    """Tests for deliveries that succeed first time."""

    @pytest.mark.asyncio
    async def test_single_record_on_success(self, dispatcher, store, receiver, sample_webhook):
        """Test a 2xx produces exactly one successful record."""
        await dispatcher.trigger(
            WebhookEventType.ORDER_CREATED, {"orderId": "ord_1"}, tenant_id="tenant-a"
        )
        await dispatcher.wait_for_pending()

        assert len(receiver.requests) == 1
        assert len(store.deliveries) == 1
        delivery = store.deliveries[0]
        assert delivery.webhook_id == sample_webhook.id
        assert delivery.event == "order.created"
        assert delivery.status_code == 200
        assert delivery.response == "ok"
        assert delivery.success is True
        assert delivery.attempt_count == 1
        assert dispatcher.pending_retries == 0

    @pytest.mark.asyncio
    async def test_request_shape(self, dispatcher, receiver, sample_webhook):
        """Test method, URL, headers and body of a delivery."""
        await dispatcher.trigger(
            "order.created", {"orderId": "ord_1"}, tenant_id="tenant-a"
        )

        request = receiver.requests[0]
        body = request.content.decode()
        envelope = json.loads(body)

        assert request.method == "POST"
        assert str(request.url) == "https://example.com/webhook"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "BudStack-Webhooks/1.0"
        assert request.headers[EVENT_HEADER] == "order.created"
        assert envelope["event"] == "order.created"
        assert envelope["tenantId"] == "tenant-a"
        assert envelope["data"] == {"orderId": "ord_1"}
        assert envelope["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_signature_covers_exact_body(self, dispatcher, receiver, sample_webhook):
        """Test the signature header verifies against the raw body sent."""
        await dispatcher.trigger("order.created", {"name": "Café"}, tenant_id="tenant-a")

        request = receiver.requests[0]
        body = request.content.decode()

        assert verify_signature(body, request.headers[SIGNATURE_HEADER], sample_webhook.secret)

    @pytest.mark.asyncio
    async def test_rich_data_values_delivered(self, dispatcher, store, receiver, sample_webhook):
        """Test data holding datetimes, decimals and UUIDs is still delivered and logged."""
        await dispatcher.trigger(
            WebhookEventType.ORDER_CREATED,
            {
                "createdAt": datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
                "total": Decimal("12.50"),
                "orderId": UUID("12345678-1234-5678-1234-567812345678"),
            },
            tenant_id="tenant-a",
        )

        assert len(receiver.requests) == 1
        assert len(store.deliveries) == 1
        assert store.deliveries[0].success is True

        request = receiver.requests[0]
        body = request.content.decode()
        data = json.loads(body)["data"]
        assert data["total"] == "12.50"
        assert data["orderId"] == "12345678-1234-5678-1234-567812345678"
        assert data["createdAt"].startswith("2024-01-01T12:00:00")
        assert verify_signature(body, request.headers[SIGNATURE_HEADER], sample_webhook.secret)

    @pytest.mark.asyncio
    async def test_shared_envelope_across_recipients(self, dispatcher, manager, receiver):
        """Test every recipient gets the same timestamp and data."""
        for path in ("a", "b", "c"):
            await manager.register(
                f"https://example.com/{path}", ["order.created"], tenant_id="tenant-a"
            )

        await dispatcher.trigger("order.created", {"orderId": "ord_1"}, tenant_id="tenant-a")

        bodies = [json.loads(r.content) for r in receiver.requests]
        assert len(bodies) == 3
        assert len({b["timestamp"] for b in bodies}) == 1
        assert all(b == bodies[0] for b in bodies)

    @pytest.mark.asyncio
    async def test_each_recipient_signed_with_own_secret(self, dispatcher, manager, receiver):
        """Test signatures use the recipient's secret."""
        first = await manager.register(
            "https://example.com/first", ["order.created"], tenant_id="tenant-a"
        )
        second = await manager.register(
            "https://example.com/second", ["order.created"], tenant_id="tenant-a"
        )

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        secrets = {
            "https://example.com/first": first.secret,
            "https://example.com/second": second.secret,
        }
        for request in receiver.requests:
            assert verify_signature(
                request.content.decode(),
                request.headers[SIGNATURE_HEADER],
                secrets[str(request.url)],
            )


# ============================================================================
# Targeting Tests
# ============================================================================


class TestTargeting:
    """Tests for which subscriptions receive an event."""

    @pytest.mark.asyncio
    async def test_no_subscribers_is_noop(self, dispatcher, store, receiver):
        """Test triggering with nothing subscribed does nothing."""
        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        assert receiver.requests == []
        assert store.deliveries == []

    @pytest.mark.asyncio
    async def test_uninterested_subscription_skipped(self, dispatcher, store, sample_webhook):
        """Test events the subscription did not select are not delivered."""
        await dispatcher.trigger("order.shipped", {}, tenant_id="tenant-a")

        assert store.deliveries == []

    @pytest.mark.asyncio
    async def test_inactive_subscription_skipped(self, dispatcher, manager, store, sample_webhook):
        """Test inactive subscriptions receive nothing."""
        await manager.update(sample_webhook.id, tenant_id="tenant-a", is_active=False)

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        assert store.deliveries == []

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, dispatcher, manager, store, receiver, sample_webhook):
        """Test tenant B's event never reaches tenant A."""
        other = await manager.register(
            "https://example.com/other", ["order.created"], tenant_id="tenant-b"
        )

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-b")

        assert [d.webhook_id for d in store.deliveries] == [other.id]
        assert [str(r.url) for r in receiver.requests] == ["https://example.com/other"]

    @pytest.mark.asyncio
    async def test_platform_event_only_reaches_platform(self, dispatcher, manager, store, sample_webhook):
        """Test a None tenant matches platform subscriptions only."""
        platform = await manager.register("https://example.com/platform", ["order.created"])

        await dispatcher.trigger("order.created", {})

        assert [d.webhook_id for d in store.deliveries] == [platform.id]

    @pytest.mark.asyncio
    async def test_unknown_event_does_not_raise(self, dispatcher, store, sample_webhook):
        """Test an unknown event type is logged, not raised."""
        await dispatcher.trigger("order.exploded", {}, tenant_id="tenant-a")

        assert store.deliveries == []


# ============================================================================
# Retry Tests
# ============================================================================


class TestRetries:
    """Tests for retry scheduling and the delivery log."""

    @pytest.mark.asyncio
    async def test_three_records_on_persistent_failure(self, dispatcher, store, receiver, sample_webhook):
        """Test a failing endpoint is tried three times with 2s and 4s waits."""
        receiver.status_code = 500
        receiver.text = "boom"

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert [d.attempt_count for d in store.deliveries] == [1, 2, 3]
        assert all(d.status_code == 500 for d in store.deliveries)
        assert all(d.response == "boom" for d in store.deliveries)
        assert not any(d.success for d in store.deliveries)
        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 4.0]
        assert len(receiver.requests) == 3

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self, dispatcher, store, receiver, sample_webhook):
        """Test a retry that succeeds stops the chain."""
        responses = iter([503, 200])

        def flaky(request: httpx.Request) -> httpx.Response:
            receiver.requests.append(request)
            return httpx.Response(next(responses), text="")

        dispatcher._client = httpx.AsyncClient(transport=httpx.MockTransport(flaky))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert [(d.attempt_count, d.success) for d in store.deliveries] == [(1, False), (2, True)]
        await dispatcher._client.aclose()

    @pytest.mark.asyncio
    async def test_network_error_logged_without_status(self, dispatcher, store, receiver, sample_webhook):
        """Test transport failures log a null status and the error text."""
        receiver.error = httpx.ConnectError("connection refused")

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert len(store.deliveries) == 3
        for delivery in store.deliveries:
            assert delivery.status_code is None
            assert delivery.response == "connection refused"
            assert delivery.success is False

    @pytest.mark.asyncio
    async def test_retry_aborts_when_deactivated(self, dispatcher, manager, store, receiver, sample_webhook):
        """Test a retry re-reads the subscription and stops if it was deactivated."""
        receiver.status_code = 500

        async def deactivate_while_waiting(delay):
            await manager.update(sample_webhook.id, tenant_id="tenant-a", is_active=False)

        with patch("asyncio.sleep", AsyncMock(side_effect=deactivate_while_waiting)):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert [d.attempt_count for d in store.deliveries] == [1]
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_aborts_when_deleted(self, dispatcher, manager, store, receiver, sample_webhook):
        """Test a retry stops silently if the subscription was deleted."""
        receiver.status_code = 500

        async def delete_while_waiting(delay):
            await manager.delete(sample_webhook.id, tenant_id="tenant-a")

        with patch("asyncio.sleep", AsyncMock(side_effect=delete_while_waiting)):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert len(store.deliveries) == 1
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_uses_updated_url(self, dispatcher, manager, receiver, sample_webhook):
        """Test a retry goes to the subscription's current URL."""
        receiver.status_code = 500

        async def move_while_waiting(delay):
            await manager.update(
                sample_webhook.id, tenant_id="tenant-a", url="https://example.org/moved"
            )

        with patch("asyncio.sleep", AsyncMock(side_effect=move_while_waiting)):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        assert [str(r.url) for r in receiver.requests] == [
            "https://example.com/webhook",
            "https://example.org/moved",
            "https://example.org/moved",
        ]

    @pytest.mark.asyncio
    async def test_retry_resends_same_envelope(self, dispatcher, receiver, sample_webhook):
        """Test retries carry the original timestamp."""
        receiver.status_code = 500

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await dispatcher.trigger("order.created", {"n": 1}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        bodies = {r.content for r in receiver.requests}
        assert len(bodies) == 1

    @pytest.mark.asyncio
    async def test_trigger_does_not_wait_for_retries(self, dispatcher, receiver, sample_webhook):
        """Test trigger returns with the retry still scheduled."""
        receiver.status_code = 500
        dispatcher._retry_base_seconds = 60.0

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        assert dispatcher.pending_retries == 1
        assert dispatcher.cancel_pending() == 1
        await dispatcher.wait_for_pending()
        assert dispatcher.pending_retries == 0
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_explicit_attempt_limit_kept(self, manager, store, receiver, sample_webhook, monkeypatch):
        """Test an explicit attempt limit below one disables retries."""
        from budstack.config import settings

        monkeypatch.setattr(settings, "WEBHOOK_MAX_ATTEMPTS", 5)
        receiver.status_code = 500
        client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
        dispatcher = WebhookDispatcher(manager, http_client=client, max_attempts=0)

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        assert dispatcher.pending_retries == 0
        assert len(store.deliveries) == 1
        await dispatcher.shutdown(cancel_pending=True)
        await client.aclose()

    def test_retry_delay(self, manager):
        """Test backoff doubles per attempt."""
        dispatcher = WebhookDispatcher(manager, retry_base_seconds=1.0)

        assert dispatcher.retry_delay_seconds(1) == 2.0
        assert dispatcher.retry_delay_seconds(2) == 4.0


# ============================================================================
# Failure Containment Tests
# ============================================================================


class TestFailureContainment:
    """Tests that dispatch never fails the caller."""

    @pytest.mark.asyncio
    async def test_lookup_failure_contained(self, dispatcher, manager):
        """Test a store error during lookup is swallowed by trigger."""
        with patch.object(
            manager, "find_subscribers", AsyncMock(side_effect=RuntimeError("db down"))
        ):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

    @pytest.mark.asyncio
    async def test_log_failure_does_not_stop_others(self, dispatcher, manager, receiver):
        """Test one subscriber's logging error leaves the others alone."""
        await manager.register("https://example.com/a", ["order.created"], tenant_id="tenant-a")
        await manager.register("https://example.com/b", ["order.created"], tenant_id="tenant-a")

        with patch.object(
            manager, "record_delivery", AsyncMock(side_effect=RuntimeError("disk full"))
        ):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")

        assert len(receiver.requests) == 2

    @pytest.mark.asyncio
    async def test_one_failing_recipient_does_not_block_others(self, dispatcher, manager, store):
        """Test a failing endpoint does not affect a healthy one."""
        good = await manager.register(
            "https://good.example.com/hook", ["order.created"], tenant_id="tenant-a"
        )
        bad = await manager.register(
            "https://bad.example.com/hook", ["order.created"], tenant_id="tenant-a"
        )

        def route(request: httpx.Request) -> httpx.Response:
            if request.url.host == "bad.example.com":
                return httpx.Response(500, text="down")
            return httpx.Response(204)

        dispatcher._client = httpx.AsyncClient(transport=httpx.MockTransport(route))

        with patch("asyncio.sleep", new_callable=AsyncMock):
            await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
            await dispatcher.wait_for_pending()

        good_records = [d for d in store.deliveries if d.webhook_id == good.id]
        bad_records = [d for d in store.deliveries if d.webhook_id == bad.id]
        assert [(d.status_code, d.success) for d in good_records] == [(204, True)]
        assert [d.attempt_count for d in bad_records] == [1, 2, 3]
        await dispatcher._client.aclose()


# ============================================================================
# Shutdown Tests
# ============================================================================


class TestShutdown:
    """Tests for dispatcher shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending(self, dispatcher, store, receiver, sample_webhook):
        """Test shutdown(cancel_pending=True) drops scheduled retries."""
        receiver.status_code = 500
        dispatcher._retry_base_seconds = 60.0

        await dispatcher.trigger("order.created", {}, tenant_id="tenant-a")
        await dispatcher.shutdown(cancel_pending=True)

        assert dispatcher.pending_retries == 0
        assert len(store.deliveries) == 1

    @pytest.mark.asyncio
    async def test_shutdown_closes_owned_client(self, manager):
        """Test a lazily created client is closed on shutdown."""
        dispatcher = WebhookDispatcher(manager)
        client = dispatcher._get_client()

        await dispatcher.shutdown()

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_shutdown_keeps_injected_client(self, manager):
        """Test an injected client is left open."""
        client = httpx.AsyncClient()
        dispatcher = WebhookDispatcher(manager, http_client=client)

        await dispatcher.shutdown()

        assert not client.is_closed
        await client.aclose()
