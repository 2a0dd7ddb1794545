"""FastAPI server for the fulfillment service.

Main entry point for the API server.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_error_handlers
from api.routes import (
    gate,
    health,
    order_sheets,
    sales_orders,
    shipments,
)
from core import __version__
from core.config import load_settings
from core.observability.logging import configure_logging, get_logger
from services import FulfillmentServices

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = load_settings()
    configure_logging(level=getattr(logging, settings.log_level, logging.INFO), json_format=settings.log_json)
    logger.info("Fulfillment API starting up")

    yield

    # Shutdown
    logger.info("Fulfillment API shutting down")


def create_app(services: Optional[FulfillmentServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built services; built from the environment on first request when omitted
    """
    app = FastAPI(
        title="Fulfillment API",
        description="Order sheets, document reconciliation and warehouse gate checkpoints",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(order_sheets.router, prefix="/order-sheets", tags=["Order Sheets"])
    app.include_router(sales_orders.router, prefix="/sales-orders", tags=["Sales Orders"])
    app.include_router(shipments.router, prefix="/shipments", tags=["Shipments"])
    app.include_router(gate.router, prefix="/gate-sessions", tags=["Gate"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
