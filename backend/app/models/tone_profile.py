"""Database model for learned per-user writing style."""

import uuid
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel, Column, JSON


class ToneProfile(SQLModel, table=True):
    """Writing-style parameters derived from a user's sent mail.

    One row per user. Each learning run replaces every field.
    """

    __tablename__ = "tone_profiles"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)

    # 0 = casual, 1 = very formal
    formality_level: float = 0.5
    # Words
    average_length: int = 100
    common_phrases: list[str] = Field(default=[], sa_column=Column(JSON))
    signature_style: str = ""
    sample_count: int = 0

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
