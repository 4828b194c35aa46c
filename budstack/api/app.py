"""FastAPI application for the BudStack webhook admin API."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from budstack.api.webhooks import router as webhooks_router
from budstack.errors import (
    BudStackError,
    CredentialError,
    ExternalApiError,
    UpstreamLogicError,
    describe_upstream_error,
)
from budstack.logging_config import configure_logging
from budstack.webhooks.dispatcher import WebhookDispatcher
from budstack.webhooks.manager import WebhookManager
from budstack.webhooks.store import SQLiteWebhookStore

logger = structlog.get_logger(__name__)


class ErrorResponse(BaseModel):
    """Error response."""

    error: str = Field(..., description="Error message")
    detail: Any = Field(default=None, description="Detailed error information")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Opens the SQLite store when no manager was injected, and drains
    pending webhook retries on shutdown.
    """
    configure_logging()
    logger.info("application_starting")

    owned_store: SQLiteWebhookStore | None = None
    if getattr(app.state, "webhook_manager", None) is None:
        owned_store = SQLiteWebhookStore()
        await owned_store.initialize()
        app.state.webhook_manager = WebhookManager(owned_store)

    if getattr(app.state, "webhook_dispatcher", None) is None:
        app.state.webhook_dispatcher = WebhookDispatcher(app.state.webhook_manager)

    yield

    logger.info("application_shutting_down")
    await app.state.webhook_dispatcher.shutdown()
    if owned_store is not None:
        await owned_store.close()


def create_app(
    manager: WebhookManager | None = None,
    dispatcher: WebhookDispatcher | None = None,
    *,
    title: str = "BudStack API",
    version: str = "1.0.0",
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        manager: Webhook manager. A SQLite-backed one is opened at startup
            if not provided.
        dispatcher: Webhook dispatcher. Built from the manager if not provided.
        title: API title.
        version: API version.
        cors_origins: Allowed CORS origins.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(title=title, version=version, lifespan=lifespan)

    app.state.webhook_manager = manager
    app.state.webhook_dispatcher = dispatcher
    if manager is not None and dispatcher is None:
        app.state.webhook_dispatcher = WebhookDispatcher(manager)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException  # noqa: ARG001
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            ).model_dump(),
        )

    @app.exception_handler(ExternalApiError)
    @app.exception_handler(UpstreamLogicError)
    @app.exception_handler(CredentialError)
    async def upstream_exception_handler(
        request: Request, exc: BudStackError  # noqa: ARG001
    ) -> JSONResponse:
        logger.warning("upstream_request_failed", **exc.to_dict())
        return JSONResponse(
            status_code=502,
            content=ErrorResponse(error=describe_upstream_error(exc)).model_dump(),
        )

    @app.exception_handler(BudStackError)
    async def budstack_exception_handler(
        request: Request, exc: BudStackError  # noqa: ARG001
    ) -> JSONResponse:
        logger.warning("request_failed", **exc.to_dict())
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error=exc.message, detail=exc.details or None).model_dump(),
        )

    app.include_router(webhooks_router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Basic liveness check."""
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}

    return app
