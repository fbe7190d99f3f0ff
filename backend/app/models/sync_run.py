"""Database model for the sync audit trail."""

import uuid
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel, Column, String

from app.models.enums import SyncStatus


class SyncRun(SQLModel, table=True):
    """One execution of a sync job.

    Created as in_progress before any provider call so that jobs which never
    finish stay visible. Moves to success or failed exactly once.
    """

    __tablename__ = "sync_runs"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    provider: str
    sync_type: str

    status: str = Field(
        default=SyncStatus.IN_PROGRESS.value, sa_column=Column(String, index=True)
    )
    # Emails actually persisted, not fetched
    emails_count: int = 0
    error: str | None = None

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
