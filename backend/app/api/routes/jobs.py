"""Job status for client polling."""

from typing import Any

from fastapi import APIRouter, HTTPException

from app.api.deps import CurrentUser, QueueDep

jobs_router = APIRouter(prefix="/jobs", tags=["jobs"])


@jobs_router.get("/{job_id}")
async def get_job_status(job_id: str, user: CurrentUser, queue: QueueDep) -> dict[str, Any]:
    status = await queue.get_status(job_id)
    # Another user's job is reported exactly like an unknown one
    if status is None or status.user_id != user.id:
        raise HTTPException(status_code=404, detail="Job not found or expired")
    return {"success": True, "data": status.to_dict()}
