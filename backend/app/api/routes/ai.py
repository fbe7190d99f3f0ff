"""AI routes.

Summarization, classification and tone learning are enqueued on the
``ai-processing`` topic and return a job id to poll. Reply drafting runs
inline because the caller is waiting for the draft.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.agents.reply_drafter import generate_reply
from app.api.deps import CompletionDep, CurrentUser, QueueDep, StoreDep
from app.jobs.payloads import AIProcessingJob
from app.jobs.queue import AI_TOPIC, JobQueue
from app.models.draft_reply import DraftReply
from app.models.enums import AITaskType

logger = logging.getLogger(__name__)

ai_router = APIRouter(prefix="/ai", tags=["ai"])


class DraftReplyRequest(BaseModel):
    """Request model for the synchronous reply drafting path."""
    model_config = ConfigDict(populate_by_name=True)

    email_id: str = Field(alias="emailId", min_length=1)
    shorthand: str = Field(min_length=1)


class BatchSummarizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_ids: list[str] = Field(alias="emailIds", min_length=1)


async def _enqueue_task(
    queue: JobQueue,
    task_type: AITaskType,
    user_id: str,
    email_id: str | None = None,
) -> str:
    request = AIProcessingJob(user_id=user_id, task_type=task_type, email_id=email_id)
    job_id = await queue.enqueue(AI_TOPIC, request.to_payload())
    logger.info(
        f"{task_type.value} job enqueued",
        extra={"user_id": user_id, "email_id": email_id, "job_id": job_id}
    )
    return job_id


@ai_router.post("/summarize/{email_id}")
async def summarize_email(
    email_id: str,
    user: CurrentUser,
    store: StoreDep,
    queue: QueueDep,
) -> dict[str, Any]:
    """Return the stored summary, or enqueue summarization if there is none yet."""
    email = store.get_email(email_id, user_id=user.id)
    if email is None:
        raise HTTPException(status_code=404, detail="Email not found")

    existing = store.get_summary(email.id)
    if existing is not None:
        return {"success": True, "data": existing.model_dump()}

    job_id = await _enqueue_task(queue, AITaskType.SUMMARIZE, user.id, email.id)
    return {"success": True, "message": "Summarization started", "data": {"job_id": job_id}}


@ai_router.post("/batch-summarize")
async def batch_summarize(
    request: BatchSummarizeRequest,
    user: CurrentUser,
    store: StoreDep,
    queue: QueueDep,
) -> dict[str, Any]:
    emails = store.find_user_emails(user.id, request.email_ids)
    if not emails:
        raise HTTPException(status_code=404, detail="No emails found")

    job_ids = [
        await _enqueue_task(queue, AITaskType.SUMMARIZE, user.id, email.id)
        for email in emails
    ]
    return {
        "success": True,
        "message": f"Summarization started for {len(emails)} emails",
        "data": {"job_ids": job_ids},
    }


@ai_router.post("/classify/{email_id}")
async def classify_email(
    email_id: str,
    user: CurrentUser,
    store: StoreDep,
    queue: QueueDep,
) -> dict[str, Any]:
    if store.get_email(email_id, user_id=user.id) is None:
        raise HTTPException(status_code=404, detail="Email not found")

    job_id = await _enqueue_task(queue, AITaskType.CLASSIFY, user.id, email_id)
    return {"success": True, "message": "Classification started", "data": {"job_id": job_id}}


@ai_router.post("/draft-reply")
async def draft_reply(
    request: DraftReplyRequest,
    user: CurrentUser,
    store: StoreDep,
    completion: CompletionDep,
) -> dict[str, Any]:
    """Expand a shorthand instruction into a full reply and store the draft."""
    email = store.get_email(request.email_id, user_id=user.id)
    if email is None:
        raise HTTPException(status_code=404, detail="Email not found")

    profile = store.get_tone_profile(user.id)
    result = await generate_reply(
        completion, email.subject, email.body, request.shorthand, profile
    )

    saved = store.create_draft_reply(DraftReply(
        email_id=email.id,
        user_id=user.id,
        shorthand=request.shorthand,
        generated_reply=result.generated_reply,
        tone=result.tone,
    ))
    return {"success": True, "data": saved.model_dump()}


@ai_router.post("/learn-tone")
async def learn_tone(user: CurrentUser, queue: QueueDep) -> dict[str, Any]:
    if not user.access_token:
        raise HTTPException(status_code=401, detail="User not authenticated")

    job_id = await _enqueue_task(queue, AITaskType.LEARN_TONE, user.id)
    return {"success": True, "message": "Tone learning started", "data": {"job_id": job_id}}


@ai_router.get("/tone-profile")
async def get_tone_profile(user: CurrentUser, store: StoreDep) -> dict[str, Any]:
    profile = store.get_tone_profile(user.id)
    if profile is None:
        return {
            "success": True,
            "data": None,
            "message": "No tone profile found. Use /learn-tone to create one.",
        }
    return {"success": True, "data": profile.model_dump()}
