"""Database model for AI-generated email summaries."""

import uuid
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel, Column, JSON


class EmailSummary(SQLModel, table=True):
    """Structured analysis of one email, created at most once.

    email_id is unique: a redelivered or concurrent summarize job either sees
    the existing row and skips, or loses the insert race and skips.
    """

    __tablename__ = "email_summaries"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    email_id: str = Field(foreign_key="emails.id", unique=True, index=True)

    summary: str
    key_points: list[str] = Field(default=[], sa_column=Column(JSON))
    sentiment: str = "neutral"
    urgency: str = "medium"
    category: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
