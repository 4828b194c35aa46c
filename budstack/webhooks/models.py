"""Webhook subscription and delivery record models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from budstack.webhooks.events import WebhookEventType
from budstack.webhooks.security import generate_webhook_secret

RESPONSE_EXCERPT_CHARS = 1000


class WebhookSubscription(BaseModel):
    """A tenant's (or the platform's) registered webhook."""

    id: str = Field(
        default_factory=lambda: f"wh_{uuid.uuid4().hex[:12]}",
        description="Unique webhook identifier",
    )
    tenant_id: str | None = Field(
        default=None,
        description="Owning tenant, None for platform-level subscriptions",
    )
    url: HttpUrl = Field(..., description="Webhook endpoint URL")
    events: list[WebhookEventType] = Field(
        ...,
        min_length=1,
        description="Event types this subscription receives",
    )
    secret: str = Field(
        default_factory=generate_webhook_secret,
        description="Secret key for HMAC signature",
    )
    description: str = Field(default="", description="Human-readable description")
    is_active: bool = Field(default=True, description="Whether webhook is active")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When webhook was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When webhook was last updated",
    )

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, value: list[WebhookEventType]) -> list[WebhookEventType]:
        return list(dict.fromkeys(value))

    def subscribes_to(self, event_type: WebhookEventType) -> bool:
        """Check if this webhook should receive an event type.

        Args:
            event_type: Event type to check.

        Returns:
            True if webhook subscribes to this event type.
        """
        return event_type in self.events


class WebhookDelivery(BaseModel):
    """Record of a single delivery attempt.

    Records are append-only: a retry produces a new record with the next
    attempt number rather than updating the previous one.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: f"dlv_{uuid.uuid4().hex[:12]}",
        description="Unique delivery identifier",
    )
    webhook_id: str = Field(..., description="Associated webhook ID")
    event: str = Field(..., description="Event type delivered")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Envelope that was sent",
    )
    status_code: int | None = Field(
        default=None,
        description="HTTP response status code, None on network failure",
    )
    response: str | None = Field(
        default=None,
        description="Response body excerpt, or the error message on network failure",
    )
    success: bool = Field(..., description="Whether the attempt got a 2xx")
    attempt_count: int = Field(..., ge=1, description="Attempt number, starting at 1")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the attempt was logged",
    )


class DeliveryPage(BaseModel):
    """One page of delivery history."""

    deliveries: list[WebhookDelivery]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)


def truncate_response(text: str | None, limit: int = RESPONSE_EXCERPT_CHARS) -> str | None:
    """Bound a response body for logging."""
    if text is None:
        return None
    return text[:limit]
