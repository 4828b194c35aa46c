"""Webhook notification system for tenant integrations.

This module provides:
- WebhookEventType: Enumeration of all webhook event types
- WebhookEnvelope: Payload structure for webhook deliveries
- WebhookManager: Subscription management and delivery logging
- WebhookDispatcher: Event fan-out with retry logic
- HMAC signature generation and verification
"""

from budstack.webhooks.dispatcher import WebhookDispatcher
from budstack.webhooks.events import (
    WEBHOOK_EVENT_CATEGORIES,
    WebhookEnvelope,
    WebhookEventType,
    create_webhook_event,
)
from budstack.webhooks.manager import WebhookManager
from budstack.webhooks.models import DeliveryPage, WebhookDelivery, WebhookSubscription
from budstack.webhooks.security import (
    generate_signature,
    generate_webhook_secret,
    verify_signature,
)
from budstack.webhooks.store import InMemoryWebhookStore, SQLiteWebhookStore, WebhookStore

__all__ = [
    # Events
    "WEBHOOK_EVENT_CATEGORIES",
    "WebhookEventType",
    "WebhookEnvelope",
    "create_webhook_event",
    # Models
    "DeliveryPage",
    "WebhookDelivery",
    "WebhookSubscription",
    # Storage
    "InMemoryWebhookStore",
    "SQLiteWebhookStore",
    "WebhookStore",
    # Manager
    "WebhookManager",
    # Dispatcher
    "WebhookDispatcher",
    # Security
    "generate_signature",
    "generate_webhook_secret",
    "verify_signature",
]
