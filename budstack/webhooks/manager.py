"""Webhook registration, subscription lookup and delivery logging.

WebhookManager is the single entry point the dispatcher and the admin API
use for subscriptions. It validates input, owns secret generation, and
appends one delivery record per attempt.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from budstack.config import settings
from budstack.errors import InvalidSubscriptionError, SubscriptionNotFoundError
from budstack.webhooks.events import WebhookEventType
from budstack.webhooks.models import (
    DeliveryPage,
    WebhookDelivery,
    WebhookSubscription,
    truncate_response,
)
from budstack.webhooks.store import WebhookStore

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


def _parse_events(events: Iterable[WebhookEventType | str]) -> list[WebhookEventType]:
    parsed: list[WebhookEventType] = []
    for event in events:
        try:
            parsed.append(WebhookEventType(event))
        except ValueError as e:
            raise InvalidSubscriptionError(
                f"Unknown event type: {event}",
                details={"event": str(event)},
            ) from e
    if not parsed:
        raise InvalidSubscriptionError("At least one event is required")
    return parsed


class WebhookManager:
    """Manages webhook subscriptions and their delivery log.

    Provides CRUD operations for subscriptions scoped to a tenant and
    append-only recording of delivery attempts.
    """

    def __init__(
        self,
        store: WebhookStore,
        *,
        response_max_chars: int | None = None,
    ) -> None:
        """Initialize the webhook manager.

        Args:
            store: Persistence backend.
            response_max_chars: Response excerpt length kept per attempt.
        """
        self._store = store
        self._response_max_chars = (
            settings.WEBHOOK_RESPONSE_MAX_CHARS
            if response_max_chars is None
            else response_max_chars
        )
        self._logger = logger.bind(component="webhook_manager")

    @property
    def store(self) -> WebhookStore:
        return self._store

    async def register(
        self,
        url: str,
        events: Iterable[WebhookEventType | str],
        *,
        tenant_id: str | None = None,
        description: str = "",
    ) -> WebhookSubscription:
        """Register a new webhook.

        A fresh secret is generated; it is returned here and only shown
        masked afterwards.

        Args:
            url: Absolute destination URL.
            events: Event types to subscribe to (non-empty).
            tenant_id: Owning tenant, None for a platform subscription.
            description: Human-readable description.

        Returns:
            Created subscription.

        Raises:
            InvalidSubscriptionError: If the URL or events are invalid.
        """
        parsed_events = _parse_events(events)

        try:
            subscription = WebhookSubscription(
                tenant_id=tenant_id,
                url=url,  # type: ignore[arg-type]
                events=parsed_events,
                description=description or "",
            )
        except ValidationError as e:
            raise InvalidSubscriptionError("Invalid URL format", details={"url": url}) from e

        await self._store.save_subscription(subscription)

        self._logger.info(
            "webhook_registered",
            webhook_id=subscription.id,
            tenant_id=tenant_id,
            url=str(subscription.url),
            event_count=len(subscription.events),
        )

        return subscription

    async def get(self, webhook_id: str) -> WebhookSubscription | None:
        """Get a webhook by ID regardless of owner."""
        return await self._store.get_subscription(webhook_id)

    async def get_for_tenant(
        self,
        webhook_id: str,
        tenant_id: str | None,
    ) -> WebhookSubscription:
        """Get a webhook owned by a tenant.

        Raises:
            SubscriptionNotFoundError: If missing or owned by someone else.
        """
        subscription = await self._store.get_subscription(webhook_id)
        if subscription is None or subscription.tenant_id != tenant_id:
            raise SubscriptionNotFoundError(
                "Webhook not found",
                details={"webhook_id": webhook_id},
            )
        return subscription

    async def list_for_tenant(self, tenant_id: str | None) -> list[WebhookSubscription]:
        """List a tenant's webhooks, newest first."""
        return await self._store.list_subscriptions(tenant_id)

    async def update(
        self,
        webhook_id: str,
        *,
        tenant_id: str | None,
        url: str | None = None,
        events: Iterable[WebhookEventType | str] | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> WebhookSubscription:
        """Update a webhook owned by a tenant.

        Only the fields that are not None change. The secret never changes.

        Returns:
            Updated subscription.

        Raises:
            SubscriptionNotFoundError: If missing or not owned by tenant.
            InvalidSubscriptionError: If the new URL or events are invalid.
        """
        existing = await self.get_for_tenant(webhook_id, tenant_id)

        changes: dict[str, Any] = {"updated_at": datetime.now(UTC)}
        if url is not None:
            changes["url"] = url
        if events is not None:
            changes["events"] = _parse_events(events)
        if description is not None:
            changes["description"] = description
        if is_active is not None:
            changes["is_active"] = is_active

        try:
            updated = WebhookSubscription.model_validate(
                {**existing.model_dump(), **changes}
            )
        except ValidationError as e:
            raise InvalidSubscriptionError("Invalid URL format", details={"url": url}) from e

        await self._store.save_subscription(updated)

        self._logger.info(
            "webhook_updated",
            webhook_id=webhook_id,
            tenant_id=tenant_id,
            fields=sorted(k for k in changes if k != "updated_at"),
        )

        return updated

    async def delete(self, webhook_id: str, *, tenant_id: str | None) -> WebhookSubscription:
        """Delete a webhook owned by a tenant.

        Delivery history is left in place.

        Returns:
            The deleted subscription.

        Raises:
            SubscriptionNotFoundError: If missing or not owned by tenant.
        """
        existing = await self.get_for_tenant(webhook_id, tenant_id)
        await self._store.delete_subscription(webhook_id)
        self._logger.info("webhook_deleted", webhook_id=webhook_id, tenant_id=tenant_id)
        return existing

    async def find_subscribers(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None,
    ) -> list[WebhookSubscription]:
        """Get active webhooks of exactly this tenant subscribed to an event.

        A tenant_id of None matches platform subscriptions only.
        """
        return await self._store.find_active_subscriptions(tenant_id, event_type)

    async def record_delivery(
        self,
        *,
        webhook_id: str,
        event: str,
        payload: dict[str, Any],
        status_code: int | None,
        response: str | None,
        success: bool,
        attempt_count: int,
    ) -> WebhookDelivery:
        """Append a record for one delivery attempt.

        Args:
            webhook_id: Target webhook.
            event: Event type delivered.
            payload: Envelope that was sent.
            status_code: HTTP status, None when the request itself failed.
            response: Response body, or the error message on network failure.
            success: Whether the attempt got a 2xx.
            attempt_count: Attempt number, starting at 1.

        Returns:
            Stored delivery record.
        """
        delivery = WebhookDelivery(
            webhook_id=webhook_id,
            event=event,
            payload=payload,
            status_code=status_code,
            response=truncate_response(response, self._response_max_chars),
            success=success,
            attempt_count=attempt_count,
        )
        await self._store.add_delivery(delivery)

        self._logger.debug(
            "delivery_recorded",
            delivery_id=delivery.id,
            webhook_id=webhook_id,
            attempt=attempt_count,
            success=success,
        )

        return delivery

    async def list_deliveries(
        self,
        webhook_id: str,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> DeliveryPage:
        """List deliveries for a webhook, newest first.

        Args:
            webhook_id: Webhook identifier.
            page: 1-based page number.
            limit: Page size, capped at MAX_PAGE_SIZE.

        Returns:
            Page of deliveries with the total count.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        deliveries = await self._store.list_deliveries(
            webhook_id, limit=limit, offset=(page - 1) * limit
        )
        total = await self._store.count_deliveries(webhook_id)

        return DeliveryPage(deliveries=deliveries, page=page, limit=limit, total=total)

    async def count_deliveries(self, webhook_id: str) -> int:
        return await self._store.count_deliveries(webhook_id)
