"""Email routes: list, detail, sync trigger, send, read flag, sync history."""

import logging
import math
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from app.api.deps import CurrentUser, QueueDep, StoreDep
from app.integrations.providers import get_mail_provider
from app.jobs.email_sync import resolve_access_token
from app.jobs.payloads import EmailSyncJob
from app.jobs.queue import SYNC_TOPIC
from app.models.enums import SyncType

logger = logging.getLogger(__name__)

emails_router = APIRouter(prefix="/emails", tags=["emails"])


class SendEmailRequest(BaseModel):
    """Request model for sending an email from the user's mailbox."""
    to: list[str] = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)

    @field_validator("to", mode="before")
    @classmethod
    def _single_recipient(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v


@emails_router.get("")
async def list_emails(
    user: CurrentUser,
    store: StoreDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    unread_only: bool = False,
) -> dict[str, Any]:
    """List the user's stored emails, newest first, each with its summary if any."""
    emails, total = store.list_emails(user.id, page=page, limit=limit, unread_only=unread_only)

    items = []
    for email in emails:
        summary = store.get_summary(email.id)
        items.append({**email.model_dump(), "summary": summary.model_dump() if summary else None})

    return {
        "success": True,
        "data": {
            "emails": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        },
    }


@emails_router.get("/sync-runs")
async def list_sync_runs(
    user: CurrentUser,
    store: StoreDep,
    limit: int = Query(default=20, ge=1, le=100),
) -> dict[str, Any]:
    runs = store.list_sync_runs(user.id, limit=limit)
    return {"success": True, "data": [run.model_dump() for run in runs]}


@emails_router.post("/sync", status_code=202)
async def start_sync(user: CurrentUser, queue: QueueDep) -> dict[str, Any]:
    """Enqueue a full sync of the user's inbox. Returns immediately."""
    request = EmailSyncJob(user_id=user.id, provider=user.provider, sync_type=SyncType.FULL)
    job_id = await queue.enqueue(SYNC_TOPIC, request.to_payload())

    logger.info("Email sync enqueued", extra={"user_id": user.id, "job_id": job_id})
    return {"success": True, "message": "Email sync started", "data": {"job_id": job_id}}


@emails_router.post("/send")
async def send_email(request: SendEmailRequest, user: CurrentUser) -> dict[str, Any]:
    """Send an HTML email through the user's provider.

    Raises:
        AuthError (401): No usable credential
        TransportError: Provider rejected or could not be reached
    """
    access_token = resolve_access_token(user)
    provider = get_mail_provider(user.provider)
    await provider.send_email(access_token, request.to, request.subject, request.body)

    logger.info(
        "Email sent",
        extra={"user_id": user.id, "recipient_count": len(request.to)}
    )
    return {"success": True, "message": "Email sent successfully"}


@emails_router.get("/{email_id}")
async def get_email(email_id: str, user: CurrentUser, store: StoreDep) -> dict[str, Any]:
    email = store.get_email(email_id, user_id=user.id)
    if email is None:
        raise HTTPException(status_code=404, detail="Email not found")

    summary = store.get_summary(email.id)
    drafts = store.list_draft_replies(email.id, limit=5)
    return {
        "success": True,
        "data": {
            **email.model_dump(),
            "summary": summary.model_dump() if summary else None,
            "draft_replies": [draft.model_dump() for draft in drafts],
        },
    }


@emails_router.patch("/{email_id}/read")
async def mark_read(email_id: str, user: CurrentUser, store: StoreDep) -> dict[str, Any]:
    if not store.mark_email_read(email_id, user.id):
        raise HTTPException(status_code=404, detail="Email not found")
    return {"success": True, "message": "Email marked as read"}
