"""Database model for generated reply drafts."""

import uuid
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel


class DraftReply(SQLModel, table=True):
    """Append-only log of drafts; every drafting request adds a row."""

    __tablename__ = "draft_replies"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    email_id: str = Field(foreign_key="emails.id", index=True)
    user_id: str = Field(index=True)

    shorthand: str
    generated_reply: str
    tone: str

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
