"""FastAPI routes for the BudStack tenant admin API.

This module contains:
- Webhook management endpoints
- Application factory
"""

from budstack.api.app import create_app
from budstack.api.webhooks import get_tenant_id, get_webhook_manager, router

__all__ = [
    "create_app",
    "get_tenant_id",
    "get_webhook_manager",
    "router",
]
