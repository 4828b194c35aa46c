"""Tenant admin webhook endpoints.

Provides REST API for managing a tenant's webhook subscriptions and
viewing their delivery history.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field, HttpUrl

from budstack.errors import InvalidSubscriptionError, SubscriptionNotFoundError
from budstack.webhooks.events import WEBHOOK_EVENT_CATEGORIES, WebhookEventType
from budstack.webhooks.manager import MAX_PAGE_SIZE, WebhookManager
from budstack.webhooks.models import WebhookDelivery, WebhookSubscription
from budstack.webhooks.security import mask_secret

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tenant-admin/webhooks", tags=["Webhooks"])


# ============================================================================
# Dependencies
# ============================================================================


async def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """Resolve the calling tenant.

    Applications with real authentication override this dependency.
    """
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="No tenant associated with user")
    return x_tenant_id


def get_webhook_manager(request: Request) -> WebhookManager:
    """Get the webhook manager wired into the application."""
    manager = getattr(request.app.state, "webhook_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Webhooks are not configured")
    return manager


# ============================================================================
# Request Models
# ============================================================================


class WebhookCreateRequest(BaseModel):
    """Request to create a new webhook."""

    url: HttpUrl = Field(..., description="Webhook endpoint URL")
    events: list[WebhookEventType] = Field(
        ...,
        min_length=1,
        description="Event types to subscribe to",
    )
    description: str = Field(default="", description="Human-readable description")


class WebhookUpdateRequest(BaseModel):
    """Request to update a webhook."""

    url: HttpUrl | None = Field(default=None, description="New URL")
    events: list[WebhookEventType] | None = Field(
        default=None,
        min_length=1,
        description="New event subscriptions",
    )
    description: str | None = Field(default=None, description="New description")
    is_active: bool | None = Field(default=None, description="Enable/disable webhook")


# ============================================================================
# Response Models
# ============================================================================


class WebhookResponse(BaseModel):
    """Webhook details response."""

    id: str
    tenant_id: str | None
    url: str
    events: list[WebhookEventType]
    secret: str
    description: str
    is_active: bool
    created_at: str
    updated_at: str
    delivery_count: int | None = None

    @classmethod
    def from_subscription(
        cls,
        subscription: WebhookSubscription,
        *,
        reveal_secret: bool = False,
        delivery_count: int | None = None,
    ) -> "WebhookResponse":
        """Create response from a subscription.

        The secret is only revealed in the creation response.
        """
        return cls(
            id=subscription.id,
            tenant_id=subscription.tenant_id,
            url=str(subscription.url),
            events=subscription.events,
            secret=subscription.secret if reveal_secret else mask_secret(subscription.secret),
            description=subscription.description,
            is_active=subscription.is_active,
            created_at=subscription.created_at.isoformat(),
            updated_at=subscription.updated_at.isoformat(),
            delivery_count=delivery_count,
        )


class WebhookListResponse(BaseModel):
    webhooks: list[WebhookResponse]


class WebhookDetailResponse(BaseModel):
    webhook: WebhookResponse


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery details response."""

    id: str
    webhook_id: str
    event: str
    payload: dict[str, Any]
    status_code: int | None
    response: str | None
    success: bool
    attempt_count: int
    created_at: str

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> "WebhookDeliveryResponse":
        """Create response from WebhookDelivery model."""
        return cls(
            id=delivery.id,
            webhook_id=delivery.webhook_id,
            event=delivery.event,
            payload=delivery.payload,
            status_code=delivery.status_code,
            response=delivery.response,
            success=delivery.success,
            attempt_count=delivery.attempt_count,
            created_at=delivery.created_at.isoformat(),
        )


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class DeliveryListResponse(BaseModel):
    deliveries: list[WebhookDeliveryResponse]
    pagination: PaginationResponse


class EventCatalogueResponse(BaseModel):
    categories: list[dict[str, Any]]


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/events", response_model=EventCatalogueResponse)
async def list_event_types() -> EventCatalogueResponse:
    """List the event types a webhook can subscribe to, grouped for display."""
    return EventCatalogueResponse(categories=WEBHOOK_EVENT_CATEGORIES)


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    tenant_id: str = Depends(get_tenant_id),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> WebhookListResponse:
    """List the tenant's webhooks, newest first, with secrets masked."""
    subscriptions = await manager.list_for_tenant(tenant_id)
    webhooks = [
        WebhookResponse.from_subscription(
            s, delivery_count=await manager.count_deliveries(s.id)
        )
        for s in subscriptions
    ]
    return WebhookListResponse(webhooks=webhooks)


@router.post(
    "",
    response_model=WebhookDetailResponse,
    responses={
        201: {"description": "Webhook created"},
        400: {"description": "Invalid request"},
    },
    status_code=201,
)
async def create_webhook(
    request: WebhookCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> WebhookDetailResponse:
    """Register a new webhook.

    A secret is generated for HMAC signature verification. This is the
    only response that shows it in full.
    """
    try:
        subscription = await manager.register(
            str(request.url),
            request.events,
            tenant_id=tenant_id,
            description=request.description,
        )
    except InvalidSubscriptionError as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    return WebhookDetailResponse(
        webhook=WebhookResponse.from_subscription(subscription, reveal_secret=True)
    )


@router.patch(
    "/{webhook_id}",
    response_model=WebhookDetailResponse,
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> WebhookDetailResponse:
    """Update a webhook's URL, events, description or active flag."""
    try:
        updated = await manager.update(
            webhook_id,
            tenant_id=tenant_id,
            url=str(request.url) if request.url else None,
            events=request.events,
            description=request.description,
            is_active=request.is_active,
        )
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    except InvalidSubscriptionError as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    return WebhookDetailResponse(webhook=WebhookResponse.from_subscription(updated))


@router.delete(
    "/{webhook_id}",
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def delete_webhook(
    webhook_id: str,
    tenant_id: str = Depends(get_tenant_id),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> dict[str, bool]:
    """Delete a webhook. Its delivery history is kept."""
    try:
        await manager.delete(webhook_id, tenant_id=tenant_id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e

    return {"success": True}


@router.get(
    "/{webhook_id}/deliveries",
    response_model=DeliveryListResponse,
    responses={
        404: {"description": "Webhook not found"},
    },
)
async def list_webhook_deliveries(
    webhook_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    tenant_id: str = Depends(get_tenant_id),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> DeliveryListResponse:
    """List delivery attempts for a webhook, newest first."""
    try:
        await manager.get_for_tenant(webhook_id, tenant_id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e

    result = await manager.list_deliveries(webhook_id, page=page, limit=limit)

    return DeliveryListResponse(
        deliveries=[WebhookDeliveryResponse.from_delivery(d) for d in result.deliveries],
        pagination=PaginationResponse(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )
