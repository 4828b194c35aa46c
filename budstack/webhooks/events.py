"""Webhook event types and the envelope sent to subscribers.

The event set is closed: subscriptions can only register interest in
values of WebhookEventType, and the dispatcher only fans out those.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic_core import to_jsonable_python


class WebhookEventType(str, Enum):
    """Supported webhook event types.

    Events are organized by category:
    - tenant.*: Store lifecycle
    - product.*: Catalogue and stock changes
    - order.*: Order lifecycle
    - consultation.*: Medical consultation workflow
    - drgreen.*: Payment/order events relayed from Dr. Green
    """

    # Tenant events
    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_ACTIVATED = "tenant.activated"
    TENANT_DEACTIVATED = "tenant.deactivated"

    # Product events
    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"
    PRODUCT_LOW_STOCK = "product.low_stock"
    PRODUCT_OUT_OF_STOCK = "product.out_of_stock"

    # Order events
    ORDER_CREATED = "order.created"
    ORDER_CONFIRMED = "order.confirmed"
    ORDER_SHIPPED = "order.shipped"
    ORDER_DELIVERED = "order.delivered"
    ORDER_CANCELLED = "order.cancelled"

    # Consultation events
    CONSULTATION_SUBMITTED = "consultation.submitted"
    CONSULTATION_APPROVED = "consultation.approved"
    CONSULTATION_REJECTED = "consultation.rejected"

    # Dr. Green events
    DRGREEN_PAYMENT_RECEIVED = "drgreen.payment_received"
    DRGREEN_PAYMENT_FAILED = "drgreen.payment_failed"
    DRGREEN_ORDER_CREATED = "drgreen.order_created"
    DRGREEN_ORDER_APPROVED = "drgreen.order_approved"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. "Product Out Of Stock"."""
        category, _, action = self.value.partition(".")
        if category == "drgreen":
            category = "Dr. Green"
        else:
            category = category.title()
        return f"{category} {action.replace('_', ' ').title()}"


_CATEGORY_NAMES = {
    "tenant": "Tenant Events",
    "product": "Product Events",
    "order": "Order Events",
    "consultation": "Consultation Events",
    "drgreen": "Dr. Green Payment Events",
}


def _build_categories() -> list[dict[str, Any]]:
    categories: dict[str, list[dict[str, str]]] = {key: [] for key in _CATEGORY_NAMES}
    for event_type in WebhookEventType:
        prefix = event_type.value.split(".", 1)[0]
        categories[prefix].append({"value": event_type.value, "label": event_type.label})
    return [
        {"name": _CATEGORY_NAMES[key], "events": events}
        for key, events in categories.items()
    ]


# Event catalogue grouped for admin UIs
WEBHOOK_EVENT_CATEGORIES: list[dict[str, Any]] = _build_categories()


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision.

    Matches the `2024-01-01T12:00:00.000Z` shape subscribers already parse.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class WebhookEnvelope(BaseModel):
    """Payload envelope delivered to every subscriber of a trigger.

    The timestamp is assigned once per trigger, so all recipients of the
    same event receive an identical envelope.
    """

    event: WebhookEventType = Field(..., description="Event type")
    tenant_id: str | None = Field(
        default=None,
        description="Owning tenant, None for platform events",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the event was dispatched",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Convert to the wire form.

        Returns:
            Dictionary with camelCase keys and an ISO-formatted timestamp.
            Values in `data` that JSON cannot represent (datetimes, decimals,
            UUIDs) are converted the way pydantic serializes them; anything
            else falls back to str().
        """
        return {
            "event": self.event.value,
            "tenantId": self.tenant_id,
            "data": to_jsonable_python(self.data, fallback=str),
            "timestamp": format_timestamp(self.timestamp),
        }


def create_webhook_event(
    event_type: WebhookEventType | str,
    data: dict[str, Any],
    *,
    tenant_id: str | None = None,
    timestamp: datetime | None = None,
) -> WebhookEnvelope:
    """Create a webhook envelope.

    Args:
        event_type: Type of event (enum member or its string value).
        data: Event-specific data.
        tenant_id: Owning tenant, None for platform events.
        timestamp: Optional custom timestamp.

    Returns:
        WebhookEnvelope ready for delivery.

    Raises:
        ValueError: If event_type is not part of the catalogue.
    """
    envelope = WebhookEnvelope(
        event=WebhookEventType(event_type),
        tenant_id=tenant_id,
        data=data,
    )

    if timestamp:
        envelope.timestamp = timestamp

    return envelope
