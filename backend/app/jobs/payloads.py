"""Wire shapes of the sync and AI-processing job payloads.

Payloads travel camelCase (``userId``, ``syncType``...) and are accepted in
snake_case too. ``to_payload`` produces the camelCase dict that gets enqueued.
"""

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.errors import InvalidJobPayloadError
from app.models.enums import AITaskType, Provider, SyncType

PayloadT = TypeVar("PayloadT", bound="JobPayload")


class JobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EmailSyncJob(JobPayload):
    user_id: str = Field(alias="userId", min_length=1)
    provider: Provider
    sync_type: SyncType = Field(default=SyncType.FULL, alias="syncType")
    last_sync_time: datetime | None = Field(default=None, alias="lastSyncTime")


class AIProcessingJob(JobPayload):
    user_id: str = Field(alias="userId", min_length=1)
    task_type: AITaskType = Field(alias="taskType")
    email_id: str | None = Field(default=None, alias="emailId")


def parse_payload(model: type[PayloadT], payload: dict[str, Any]) -> PayloadT:
    """Validate a dequeued payload.

    Raises:
        InvalidJobPayloadError: The payload does not match ``model``
    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) or "payload" for error in e.errors()
        )
        raise InvalidJobPayloadError(f"Invalid {model.__name__} payload: {fields}") from e
