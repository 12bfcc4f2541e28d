"""
Client directory.

Invoicing does not own client records; it only needs a client to exist when
an invoice is created and the recipient email when one is sent. This
in-process directory stands in for the upstream client store.
"""

import logging
import threading
from uuid import UUID, uuid4

from core.exceptions import NotFound
from core.models import Client, ClientCreate

logger = logging.getLogger(__name__)


class ClientDirectory:
    """Lookup of invoice recipients by id."""

    def __init__(self):
        self._clients: dict[UUID, Client] = {}
        self._lock = threading.Lock()

    def register(self, data: ClientCreate, client_id: UUID | None = None) -> Client:
        """
        Add a client.

        Args:
            data: Client details
            client_id: Use a known id (e.g. from the upstream store)

        Returns:
            Registered client
        """
        client = Client(id=client_id or uuid4(), **data.model_dump())
        with self._lock:
            self._clients[client.id] = client
        logger.info("Registered client %s", client.id)
        return client

    def get_by_id(self, client_id: UUID) -> Client | None:
        with self._lock:
            return self._clients.get(client_id)

    def require(self, client_id: UUID) -> Client:
        """
        Get a client that must exist.

        Raises:
            NotFound: Unknown client id
        """
        client = self.get_by_id(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found", code="CLIENT_NOT_FOUND")
        return client

    def list_all(self) -> list[Client]:
        with self._lock:
            return sorted(self._clients.values(), key=lambda c: c.name.lower())
