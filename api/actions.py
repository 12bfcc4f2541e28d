"""POST /api/actions: unified mutation endpoint."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.exceptions import NotFound
from core.models import (
    ClientCreate,
    InvoiceCreate,
    InvoiceUpdate,
    LineItemCreate,
    LineItemUpdate,
    PaymentCreate,
    PaymentStatus,
)
from utils.timezone import parse_iso


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def _id(data: dict, key: str = "id") -> UUID:
    if data.get(key) is None:
        raise ValueError(f"'{key}' is required")
    return UUID(str(data[key]))


def _ids(data: dict) -> list[UUID]:
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValueError("'ids' must be a non-empty list")
    return [UUID(str(i)) for i in ids]


def _flag(data: dict, key: str) -> bool | None:
    value = data.get(key)
    if value is not None and not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false")
    return value


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "client": ClientHandler(services["client"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["invoice"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(dict(body.data))
        return success_response(result, request.state.request_id).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class ClientHandler:
    ALLOWED_ACTIONS = {"create"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        client_id = _id(data) if data.get("id") is not None else None
        data.pop("id", None)
        client = self.service.register(ClientCreate(**data), client_id=client_id)
        return client.model_dump(mode="json")


class InvoiceHandler:
    ALLOWED_ACTIONS = {
        "create", "update", "send", "view", "cancel", "delete", "duplicate",
        "add_item", "update_item", "remove_item", "extend_due_date",
        "share", "send_bulk", "delete_bulk",
    }

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create_invoice(InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update(self, data: dict):
        invoice_id = _id(data)
        data.pop("id")
        expected_version = data.pop("version", None)
        invoice = self.service.update_invoice(
            invoice_id, InvoiceUpdate(**data), expected_version=expected_version
        )
        return invoice.model_dump(mode="json")

    def _handle_send(self, data: dict):
        invoice = self.service.send(_id(data))
        return invoice.model_dump(mode="json")

    def _handle_view(self, data: dict):
        invoice = self.service.record_view(_id(data))
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, data: dict):
        invoice = self.service.cancel(_id(data))
        return invoice.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        invoice_id = _id(data)
        deleted = self.service.delete(invoice_id)
        if not deleted:
            raise NotFound(f"Invoice {invoice_id} not found")
        return {"deleted": True}

    def _handle_duplicate(self, data: dict):
        invoice = self.service.duplicate(_id(data))
        return invoice.model_dump(mode="json")

    def _handle_add_item(self, data: dict):
        invoice_id = _id(data, "invoice_id")
        data.pop("invoice_id")
        item = self.service.add_line_item(invoice_id, LineItemCreate(**data))
        return item.model_dump(mode="json")

    def _handle_update_item(self, data: dict):
        invoice_id = _id(data, "invoice_id")
        item_id = _id(data)
        data.pop("invoice_id")
        data.pop("id")
        item = self.service.update_line_item(invoice_id, item_id, LineItemUpdate(**data))
        return item.model_dump(mode="json")

    def _handle_remove_item(self, data: dict):
        invoice = self.service.remove_line_item(_id(data, "invoice_id"), _id(data))
        return invoice.model_dump(mode="json")

    def _handle_extend_due_date(self, data: dict):
        due_date = data.get("due_date")
        if not due_date:
            raise ValueError("'due_date' is required")
        if not isinstance(due_date, datetime):
            due_date = parse_iso(str(due_date))
        invoice = self.service.extend_due_date(_id(data), due_date)
        return invoice.model_dump(mode="json")

    def _handle_share(self, data: dict):
        invoice = self.service.update_share(
            _id(data),
            enable=_flag(data, "enable"),
            regenerate=bool(_flag(data, "regenerate")),
        )
        return {
            "id": str(invoice.id),
            "share_id": str(invoice.share_id) if invoice.share_id else None,
            "share_enabled": invoice.share_enabled,
        }

    def _handle_send_bulk(self, data: dict):
        return self.service.send_bulk(_ids(data)).model_dump(mode="json")

    def _handle_delete_bulk(self, data: dict):
        return self.service.delete_bulk(_ids(data)).model_dump(mode="json")


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "update_status", "refund"}

    def __init__(self, service):
        self.service = service

    def _result(self, invoice_id: UUID, payment) -> dict:
        invoice = self.service.get_by_id(invoice_id)
        return {
            "payment": payment.model_dump(mode="json"),
            "invoice": invoice.model_dump(mode="json") if invoice else None,
        }

    def _handle_record(self, data: dict):
        invoice_id = _id(data, "invoice_id")
        data.pop("invoice_id")
        payment = self.service.record_payment(invoice_id, PaymentCreate(**data))
        return self._result(invoice_id, payment)

    def _handle_update_status(self, data: dict):
        invoice_id = _id(data, "invoice_id")
        if not data.get("status"):
            raise ValueError("'status' is required")
        payment = self.service.update_payment_status(
            invoice_id, _id(data), PaymentStatus(data["status"])
        )
        return self._result(invoice_id, payment)

    def _handle_refund(self, data: dict):
        invoice_id = _id(data, "invoice_id")
        payment = self.service.refund_payment(invoice_id, _id(data), amount=data.get("amount"))
        return self._result(invoice_id, payment)
