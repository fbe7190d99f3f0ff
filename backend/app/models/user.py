"""Database model for mailbox owners."""

import uuid
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """A mailbox owner and the provider credential issued to them.

    Credentials are written by the OAuth callback and refresh flow, which
    live outside the job pipeline. The pipeline only reads them.
    """

    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    email: str = Field(index=True, unique=True)
    name: str | None = None

    # "outlook" | "gmail"
    provider: str

    # Provider credential (bearer token)
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
