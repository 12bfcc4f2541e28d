"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.exceptions import NotFound


VALID_TYPES = {"invoices", "clients"}
INVOICE_FILTERS = {"unpaid", "overdue"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    client_svc = services["client"]

    # -------------------------------------------------------------------------
    # Convenience routes (must be registered before the generic /data route)
    # -------------------------------------------------------------------------

    @router.get("/data/invoices/statistics")
    async def invoice_statistics(request: Request):
        stats = invoice_svc.statistics()
        return success_response(
            stats.model_dump(mode="json"), request.state.request_id
        ).model_dump(mode="json")

    @router.get("/data/payments/statistics")
    async def payment_statistics(request: Request):
        stats = invoice_svc.payment_statistics()
        return success_response(
            stats.model_dump(mode="json"), request.state.request_id
        ).model_dump(mode="json")

    @router.get("/data/shared/{share_id}")
    async def shared_invoice(request: Request, share_id: UUID):
        """Public view through a share link. Records a recipient view."""
        invoice = invoice_svc.view_shared(
            share_id,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        return success_response(
            invoice.model_dump(mode="json"), request.state.request_id
        ).model_dump(mode="json")

    @router.get("/data/invoices/{invoice_id}/history")
    async def invoice_history(request: Request, invoice_id: UUID):
        history = invoice_svc.get_history(invoice_id)
        return success_response(
            [h.model_dump(mode="json") for h in history], request.state.request_id
        ).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Generic data endpoint
    # -------------------------------------------------------------------------

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        client_id: str | None = Query(None),
        number: str | None = Query(None),
        filter: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        if type == "clients":
            data = _handle_clients(client_svc, id)
        else:
            data = _handle_invoices(invoice_svc, id, client_id, number, filter, limit, offset)

        return success_response(data, request.state.request_id).model_dump(mode="json")

    return router


def _handle_clients(client_svc, id):
    if id:
        client = client_svc.get_by_id(UUID(id))
        if client is None:
            raise NotFound(f"Client {id} not found")
        return client.model_dump(mode="json")

    return [c.model_dump(mode="json") for c in client_svc.list_all()]


def _handle_invoices(invoice_svc, id, client_id, number, filter, limit, offset):
    if id:
        invoice = invoice_svc.get_by_id(UUID(id))
        if invoice is None:
            raise NotFound(f"Invoice {id} not found")
        return invoice.model_dump(mode="json")

    if number:
        invoice = invoice_svc.get_by_number(number)
        if invoice is None:
            raise NotFound(f"Invoice {number} not found")
        return invoice.model_dump(mode="json")

    if client_id:
        invoices = invoice_svc.list_for_client(UUID(client_id))
    elif filter == "unpaid":
        invoices = invoice_svc.list_unpaid()
    elif filter == "overdue":
        invoices = invoice_svc.list_overdue()
    elif filter is not None:
        raise ValueError(
            f"Unknown invoice filter '{filter}'. Valid filters: {', '.join(sorted(INVOICE_FILTERS))}"
        )
    else:
        invoices = invoice_svc.list_all()

    return [i.model_dump(mode="json") for i in invoices[offset:offset + limit]]
