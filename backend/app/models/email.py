"""Database model for emails ingested from mail providers."""

import uuid
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel, Column, JSON

# Fields a later sync may overwrite. Everything else is fixed once stored.
MUTABLE_EMAIL_FIELDS = ("is_read", "importance", "categories")


class Email(SQLModel, table=True):
    """Local copy of one provider message.

    The pair (user_id, external_id) is the merge key: repeated syncs of the
    same provider message must land on the same row, so the store enforces
    it with a unique constraint rather than trusting callers.
    """

    __tablename__ = "emails"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_emails_user_external"),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    user_id: str = Field(foreign_key="users.id", index=True)
    external_id: str

    subject: str
    sender: str = ""
    to_recipients: list[str] = Field(default=[], sa_column=Column(JSON))
    cc_recipients: list[str] = Field(default=[], sa_column=Column(JSON))
    body: str = ""
    body_preview: str = ""
    received_at: datetime = Field(index=True)
    has_attachments: bool = False
    conversation_id: str | None = None

    # Mutable on re-sync
    is_read: bool = False
    importance: str = "normal"
    categories: list[str] = Field(default=[], sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
