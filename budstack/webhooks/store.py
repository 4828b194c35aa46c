"""Persistence for webhook subscriptions and delivery logs.

Two backends share the WebhookStore interface:
- InMemoryWebhookStore for tests and single-process tools
- SQLiteWebhookStore backed by aiosqlite

Each operation is one independent read or write; there is no caching and
no locking, so concurrent subscription edits are last-write-wins.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from budstack.config import settings
from budstack.webhooks.events import WebhookEventType
from budstack.webhooks.models import WebhookDelivery, WebhookSubscription

logger = structlog.get_logger(__name__)


class WebhookStore(ABC):
    """Storage interface used by WebhookManager."""

    @abstractmethod
    async def save_subscription(self, subscription: WebhookSubscription) -> WebhookSubscription:
        """Insert or replace a subscription."""

    @abstractmethod
    async def get_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        """Fetch a subscription by id."""

    @abstractmethod
    async def list_subscriptions(self, tenant_id: str | None) -> list[WebhookSubscription]:
        """List a tenant's subscriptions, newest first."""

    @abstractmethod
    async def find_active_subscriptions(
        self,
        tenant_id: str | None,
        event_type: WebhookEventType,
    ) -> list[WebhookSubscription]:
        """Active subscriptions of exactly this tenant interested in event_type."""

    @abstractmethod
    async def delete_subscription(self, webhook_id: str) -> bool:
        """Delete a subscription. Delivery history is kept."""

    @abstractmethod
    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Append a delivery record."""

    @abstractmethod
    async def list_deliveries(
        self,
        webhook_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookDelivery]:
        """List delivery records for a webhook, newest first."""

    @abstractmethod
    async def count_deliveries(self, webhook_id: str) -> int:
        """Count delivery records for a webhook."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class InMemoryWebhookStore(WebhookStore):
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._deliveries: list[WebhookDelivery] = []

    async def save_subscription(self, subscription: WebhookSubscription) -> WebhookSubscription:
        self._subscriptions[subscription.id] = subscription
        return subscription

    async def get_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        return self._subscriptions.get(webhook_id)

    async def list_subscriptions(self, tenant_id: str | None) -> list[WebhookSubscription]:
        subscriptions = [s for s in self._subscriptions.values() if s.tenant_id == tenant_id]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def find_active_subscriptions(
        self,
        tenant_id: str | None,
        event_type: WebhookEventType,
    ) -> list[WebhookSubscription]:
        return [
            s
            for s in self._subscriptions.values()
            if s.is_active and s.tenant_id == tenant_id and s.subscribes_to(event_type)
        ]

    async def delete_subscription(self, webhook_id: str) -> bool:
        return self._subscriptions.pop(webhook_id, None) is not None

    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        self._deliveries.append(delivery)
        return delivery

    async def list_deliveries(
        self,
        webhook_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookDelivery]:
        deliveries = [d for d in self._deliveries if d.webhook_id == webhook_id]
        deliveries.reverse()
        return deliveries[offset : offset + limit]

    async def count_deliveries(self, webhook_id: str) -> int:
        return sum(1 for d in self._deliveries if d.webhook_id == webhook_id)

    @property
    def deliveries(self) -> list[WebhookDelivery]:
        """All delivery records in insertion order."""
        return list(self._deliveries)


class SQLiteWebhookStore(WebhookStore):
    """SQLite-based storage for subscriptions and delivery logs.

    Event interests are stored as a JSON array; the interest filter is
    applied in Python after the tenant/active filter in SQL.

    Example:
        store = SQLiteWebhookStore()
        await store.initialize()
        await store.save_subscription(subscription)
    """

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file.
                    Defaults to WEBHOOK_DB_PATH from settings.
        """
        self._db_path = db_path or settings.WEBHOOK_DB_PATH
        self._connection: aiosqlite.Connection | None = None
        self._logger = logger.bind(component="webhook_store")

    async def initialize(self) -> None:
        """Open the database and create tables."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()
        self._logger.info("webhook_store_initialized", db_path=self._db_path)

    async def _create_tables(self) -> None:
        assert self._connection is not None

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS webhooks (
                id TEXT PRIMARY KEY,
                tenant_id TEXT,
                url TEXT NOT NULL,
                events TEXT NOT NULL,
                secret TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # No foreign key: history outlives the subscription
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                webhook_id TEXT NOT NULL,
                event TEXT NOT NULL,
                payload TEXT NOT NULL,
                status_code INTEGER,
                response TEXT,
                success INTEGER NOT NULL,
                attempt_count INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_webhooks_tenant ON webhooks(tenant_id, is_active)
        """)
        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_webhook ON webhook_deliveries(webhook_id)
        """)

        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("SQLiteWebhookStore.initialize() has not been called")
        return self._connection

    async def save_subscription(self, subscription: WebhookSubscription) -> WebhookSubscription:
        await self._conn.execute(
            """
            INSERT OR REPLACE INTO webhooks
            (id, tenant_id, url, events, secret, description, is_active,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subscription.id,
                subscription.tenant_id,
                str(subscription.url),
                json.dumps([e.value for e in subscription.events]),
                subscription.secret,
                subscription.description,
                int(subscription.is_active),
                subscription.created_at.isoformat(),
                subscription.updated_at.isoformat(),
            ),
        )
        await self._conn.commit()
        return subscription

    async def get_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        async with self._conn.execute(
            "SELECT * FROM webhooks WHERE id = ?", (webhook_id,)
        ) as cursor:
            row = await cursor.fetchone()

        return self._row_to_subscription(row) if row else None

    async def list_subscriptions(self, tenant_id: str | None) -> list[WebhookSubscription]:
        async with self._conn.execute(
            "SELECT * FROM webhooks WHERE tenant_id IS ? ORDER BY created_at DESC",
            (tenant_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        return [self._row_to_subscription(row) for row in rows]

    async def find_active_subscriptions(
        self,
        tenant_id: str | None,
        event_type: WebhookEventType,
    ) -> list[WebhookSubscription]:
        # IS matches NULL only against NULL, so platform events stay separate
        async with self._conn.execute(
            "SELECT * FROM webhooks WHERE tenant_id IS ? AND is_active = 1",
            (tenant_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        subscriptions = [self._row_to_subscription(row) for row in rows]
        return [s for s in subscriptions if s.subscribes_to(event_type)]

    async def delete_subscription(self, webhook_id: str) -> bool:
        cursor = await self._conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
        await self._conn.commit()
        return cursor.rowcount > 0

    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        await self._conn.execute(
            """
            INSERT INTO webhook_deliveries
            (id, webhook_id, event, payload, status_code, response, success,
             attempt_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                delivery.id,
                delivery.webhook_id,
                delivery.event,
                json.dumps(delivery.payload, default=str),
                delivery.status_code,
                delivery.response,
                int(delivery.success),
                delivery.attempt_count,
                delivery.created_at.isoformat(),
            ),
        )
        await self._conn.commit()
        return delivery

    async def list_deliveries(
        self,
        webhook_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookDelivery]:
        async with self._conn.execute(
            """
            SELECT * FROM webhook_deliveries
            WHERE webhook_id = ?
            ORDER BY seq DESC
            LIMIT ? OFFSET ?
            """,
            (webhook_id, limit, offset),
        ) as cursor:
            rows = await cursor.fetchall()

        return [self._row_to_delivery(row) for row in rows]

    async def count_deliveries(self, webhook_id: str) -> int:
        async with self._conn.execute(
            "SELECT COUNT(*) FROM webhook_deliveries WHERE webhook_id = ?",
            (webhook_id,),
        ) as cursor:
            row = await cursor.fetchone()

        return int(row[0]) if row else 0

    def _row_to_subscription(self, row: Any) -> WebhookSubscription:
        return WebhookSubscription(
            id=row["id"],
            tenant_id=row["tenant_id"],
            url=row["url"],
            events=json.loads(row["events"]),
            secret=row["secret"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_delivery(self, row: Any) -> WebhookDelivery:
        return WebhookDelivery(
            id=row["id"],
            webhook_id=row["webhook_id"],
            event=row["event"],
            payload=json.loads(row["payload"]),
            status_code=row["status_code"],
            response=row["response"],
            success=bool(row["success"]),
            attempt_count=row["attempt_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
