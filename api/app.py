"""Application factory."""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, UserContextMiddleware
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.repository import InvoiceRepository
from core.services.client_service import ClientDirectory
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


def build_services(config: BillingConfig | None = None, event_bus: EventBus | None = None) -> dict:
    """Wire the in-process services. Keys match the action/data domains."""
    config = config or BillingConfig.from_env()
    clients = ClientDirectory()
    invoices = InvoiceService(
        repository=InvoiceRepository(),
        clients=clients,
        audit=AuditLogger(),
        event_bus=event_bus or EventBus(),
        config=config,
    )
    return {"client": clients, "invoice": invoices}


def create_app(services: dict | None = None) -> FastAPI:
    """FastAPI app with middleware, error handlers, and data/actions routes."""
    services = services or build_services()

    app = FastAPI(title="Invoicing")
    # Added last runs first: request id is set before the user context
    app.add_middleware(UserContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("Invoicing API ready")
    return app
