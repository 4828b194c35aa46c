"""Webhook event dispatcher with retry logic.

Fans a business event out to every interested, active subscription of a
tenant and records every delivery attempt. Failed attempts are retried
with exponential backoff (2s, then 4s) up to three attempts in total.

Retries run as tracked asyncio tasks rather than being awaited by the
triggering call, so they can be observed, drained on shutdown, or
cancelled. Pending retries live in memory only and are lost on restart.
"""

import asyncio
from typing import Any

import httpx
import structlog

from budstack.config import settings
from budstack.errors import DeliveryFailure
from budstack.webhooks.events import WebhookEnvelope, WebhookEventType
from budstack.webhooks.manager import WebhookManager
from budstack.webhooks.models import truncate_response
from budstack.webhooks.security import canonical_json, create_signature_headers

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class WebhookDispatcher:
    """Dispatches webhook events to subscribed endpoints.

    Features:
    - Concurrent, independent delivery per subscriber
    - Re-fetch of the subscription before every attempt
    - HMAC signature over the exact body sent
    - Exponential backoff retry as tracked background tasks
    - One delivery log record per attempt
    """

    def __init__(
        self,
        manager: WebhookManager,
        *,
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int | None = None,
        retry_base_seconds: float | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            manager: Webhook manager used for lookups and delivery logging.
            http_client: Shared HTTP client. One is created lazily if omitted.
            max_attempts: Total attempts per subscriber (initial + retries).
            retry_base_seconds: Backoff base; attempt N waits base * 2**N.
            user_agent: User-Agent header for deliveries.
            timeout: Per-request timeout for a lazily created client, in seconds.
        """
        self._manager = manager
        self._client = http_client
        self._owns_client = http_client is None
        self._max_attempts = (
            settings.WEBHOOK_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self._retry_base_seconds = (
            settings.WEBHOOK_RETRY_BASE_SECONDS
            if retry_base_seconds is None
            else retry_base_seconds
        )
        self._user_agent = user_agent or settings.WEBHOOK_USER_AGENT
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS
        self._retry_tasks: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="webhook_dispatcher")

    @property
    def pending_retries(self) -> int:
        """Number of scheduled retries that have not finished yet."""
        return sum(1 for task in self._retry_tasks if not task.done())

    def retry_delay_seconds(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        return self._retry_base_seconds * (2**attempt)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def trigger(
        self,
        event_type: WebhookEventType | str,
        data: dict[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> None:
        """Trigger webhooks for an event.

        Never raises: webhook delivery must not fail the business action
        that produced the event.

        Args:
            event_type: Event type (enum member or its string value).
            data: Event-specific data.
            tenant_id: Owning tenant; None targets platform subscriptions.
        """
        try:
            event = WebhookEventType(event_type)
            subscriptions = await self._manager.find_subscribers(event, tenant_id)

            if not subscriptions:
                self._logger.debug(
                    "no_webhooks_subscribed",
                    event_type=event.value,
                    tenant_id=tenant_id,
                )
                return

            envelope = WebhookEnvelope(event=event, tenant_id=tenant_id, data=data)
            payload = envelope.to_json_dict()

            results = await asyncio.gather(
                *(self._deliver(s.id, payload, attempt=1) for s in subscriptions),
                return_exceptions=True,
            )

            for subscription, result in zip(subscriptions, results, strict=True):
                if isinstance(result, BaseException):
                    self._logger.error(
                        "delivery_crashed",
                        webhook_id=subscription.id,
                        error=str(result),
                    )

            self._logger.info(
                "event_dispatched",
                event_type=event.value,
                tenant_id=tenant_id,
                webhook_count=len(subscriptions),
            )

        except Exception as e:
            self._logger.error(
                "webhook_trigger_failed",
                event_type=str(event_type),
                tenant_id=tenant_id,
                error=str(e),
            )

    async def _deliver(
        self,
        webhook_id: str,
        payload: dict[str, Any],
        *,
        attempt: int,
    ) -> None:
        """Make one delivery attempt and schedule the next on failure.

        Args:
            webhook_id: Target webhook.
            payload: Wire envelope shared by all recipients.
            attempt: Attempt number, starting at 1.
        """
        subscription = await self._manager.get(webhook_id)
        if subscription is None or not subscription.is_active:
            self._logger.debug(
                "delivery_skipped_inactive",
                webhook_id=webhook_id,
                attempt=attempt,
            )
            return

        event = payload["event"]
        body = canonical_json(payload)
        headers = create_signature_headers(
            body, event, subscription.secret, user_agent=self._user_agent
        )

        self._logger.debug(
            "attempting_delivery",
            webhook_id=webhook_id,
            attempt=attempt,
            url=str(subscription.url),
        )

        try:
            status_code, response_text = await self._post(str(subscription.url), body, headers)
        except DeliveryFailure as e:
            await self._log_attempt(
                webhook_id, event, payload,
                status_code=e.status_code,
                response=e.response,
                success=False,
                attempt=attempt,
            )
            self._logger.warning(
                "delivery_non_success_response",
                webhook_id=webhook_id,
                status_code=e.status_code,
                attempt=attempt,
            )
        except httpx.HTTPError as e:
            await self._log_attempt(
                webhook_id, event, payload,
                status_code=None,
                response=str(e) or e.__class__.__name__,
                success=False,
                attempt=attempt,
            )
            self._logger.warning(
                "delivery_request_error",
                webhook_id=webhook_id,
                attempt=attempt,
                error=str(e),
            )
        else:
            await self._log_attempt(
                webhook_id, event, payload,
                status_code=status_code,
                response=response_text,
                success=True,
                attempt=attempt,
            )
            self._logger.info(
                "delivery_success",
                webhook_id=webhook_id,
                status_code=status_code,
                attempt=attempt,
            )
            return

        if attempt < self._max_attempts:
            self._schedule_retry(webhook_id, payload, attempt)
        else:
            self._logger.error(
                "delivery_failed_permanently",
                webhook_id=webhook_id,
                attempts=attempt,
            )

    async def _post(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
    ) -> tuple[int, str]:
        """POST the body and return (status, truncated text).

        Raises:
            DeliveryFailure: On a non-2xx response.
            httpx.HTTPError: On transport errors.
        """
        client = self._get_client()
        response = await client.post(url, content=body.encode("utf-8"), headers=headers)

        try:
            text = response.text
        except (UnicodeDecodeError, LookupError):
            text = ""
        text = truncate_response(text, settings.WEBHOOK_RESPONSE_MAX_CHARS) or ""

        if not response.is_success:
            raise DeliveryFailure(response.status_code, text)

        return response.status_code, text

    async def _log_attempt(
        self,
        webhook_id: str,
        event: str,
        payload: dict[str, Any],
        *,
        status_code: int | None,
        response: str | None,
        success: bool,
        attempt: int,
    ) -> None:
        try:
            await self._manager.record_delivery(
                webhook_id=webhook_id,
                event=event,
                payload=payload,
                status_code=status_code,
                response=response,
                success=success,
                attempt_count=attempt,
            )
        except Exception as e:
            self._logger.error(
                "delivery_log_failed",
                webhook_id=webhook_id,
                attempt=attempt,
                error=str(e),
            )

    def _schedule_retry(self, webhook_id: str, payload: dict[str, Any], attempt: int) -> None:
        delay = self.retry_delay_seconds(attempt)
        self._logger.debug(
            "scheduling_retry",
            webhook_id=webhook_id,
            delay_seconds=delay,
            next_attempt=attempt + 1,
        )
        task = asyncio.create_task(self._retry_after(webhook_id, payload, attempt + 1, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _retry_after(
        self,
        webhook_id: str,
        payload: dict[str, Any],
        attempt: int,
        delay: float,
    ) -> None:
        await asyncio.sleep(delay)
        try:
            await self._deliver(webhook_id, payload, attempt=attempt)
        except Exception as e:
            self._logger.error(
                "retry_crashed",
                webhook_id=webhook_id,
                attempt=attempt,
                error=str(e),
            )

    async def wait_for_pending(self) -> None:
        """Wait until every scheduled retry chain has finished."""
        while self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    def cancel_pending(self) -> int:
        """Cancel scheduled retries.

        Returns:
            Number of retries cancelled.
        """
        cancelled = 0
        for task in list(self._retry_tasks):
            if task.cancel():
                cancelled += 1
        if cancelled:
            self._logger.info("retries_cancelled", count=cancelled)
        return cancelled

    async def shutdown(self, *, cancel_pending: bool = False) -> None:
        """Shutdown dispatcher.

        Args:
            cancel_pending: Cancel scheduled retries instead of waiting.
        """
        if self._retry_tasks:
            self._logger.info(
                "waiting_for_pending_retries",
                count=len(self._retry_tasks),
                cancel=cancel_pending,
            )
            if cancel_pending:
                self.cancel_pending()
            await self.wait_for_pending()

        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
