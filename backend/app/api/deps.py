"""Shared FastAPI dependencies.

Process-wide collaborators (record store, job queue, completion service) are
created once in the application lifespan and kept on ``app.state``.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from app.agents.completion import CompletionService
from app.jobs.queue import JobQueue
from app.models.user import User
from app.store.records import RecordStore


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_completion_service(request: Request) -> CompletionService:
    return request.app.state.completion_service


def get_current_user(
    store: Annotated[RecordStore, Depends(get_record_store)],
    x_user_id: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve the caller from the ``X-User-Id`` header set by the identity layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = store.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found or not authenticated")
    return user


StoreDep = Annotated[RecordStore, Depends(get_record_store)]
QueueDep = Annotated[JobQueue, Depends(get_job_queue)]
CompletionDep = Annotated[CompletionService, Depends(get_completion_service)]
CurrentUser = Annotated[User, Depends(get_current_user)]
