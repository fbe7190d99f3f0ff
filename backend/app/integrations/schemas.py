"""Provider-agnostic email record produced by the mail provider fetchers."""

from datetime import datetime
from pydantic import BaseModel, Field


class NormalizedEmail(BaseModel):
    """One provider message mapped onto the local email shape."""

    external_id: str
    subject: str = "(No Subject)"
    sender: str = ""
    to_recipients: list[str] = Field(default_factory=list)
    cc_recipients: list[str] = Field(default_factory=list)
    body: str = ""
    body_preview: str = ""
    received_at: datetime
    is_read: bool = False
    importance: str = "normal"
    has_attachments: bool = False
    categories: list[str] = Field(default_factory=list)
    conversation_id: str | None = None
