"""Client (invoice recipient) models.

Client records are owned by the client screens; invoicing only reads the
recipient address when sending.
"""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ClientCreate(BaseModel):
    """Data required to register a client."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(None, max_length=320)
    address: str | None = Field(None, max_length=1000)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        if value and "@" not in value:
            raise ValueError("email must contain '@'")
        return value or None


class Client(BaseModel):
    """Client record as supplied by the client directory."""

    id: UUID
    name: str
    email: str | None = None
    address: str | None = None

    model_config = {"from_attributes": True}
