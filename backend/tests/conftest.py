"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.update({
    "OPENAI_API_KEY": "sk-test-key",
    "DATABASE_URL": "sqlite://",
    "QUEUE_BACKEND": "memory",
    "REDIS_URL": "redis://localhost:6379/1",
    "ENABLE_SCHEDULER": "false",
    "OTEL_TRACES_EXPORTER": "none",
})

from app.core.db import build_engine, init_db  # noqa: E402
from app.integrations.schemas import NormalizedEmail  # noqa: E402
from app.models.user import User  # noqa: E402
from app.store.records import RecordStore  # noqa: E402


@pytest.fixture
def store() -> RecordStore:
    """Record store over a fresh in-memory SQLite database."""
    engine = build_engine("sqlite://")
    init_db(engine)
    return RecordStore(engine)


@pytest.fixture
def user(store: RecordStore) -> User:
    with store.session() as session:
        record = User(
            email="owner@example.com",
            name="Mailbox Owner",
            provider="gmail",
            access_token="ya29.test-access-token",
            refresh_token="1//test-refresh-token",
            token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def make_email(external_id: str = "msg-1", **overrides: Any) -> NormalizedEmail:
    """A fetched email as a provider fetcher would return it."""
    values: dict[str, Any] = {
        "external_id": external_id,
        "subject": f"Subject {external_id}",
        "sender": "alice@example.com",
        "to_recipients": ["owner@example.com"],
        "cc_recipients": [],
        "body": f"<p>Body of {external_id}</p>",
        "body_preview": f"Body of {external_id}",
        "received_at": datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
        "has_attachments": False,
        "conversation_id": f"thread-{external_id}",
        "is_read": False,
        "importance": "normal",
        "categories": ["INBOX"],
    }
    values.update(overrides)
    return NormalizedEmail(**values)


@pytest.fixture
def email_factory():
    return make_email


@pytest.fixture
def completion() -> MagicMock:
    """Completion service double; set ``completion.complete.return_value`` per test."""
    service = MagicMock()
    service.complete = AsyncMock(return_value="")
    return service


@pytest.fixture
def mock_queue() -> MagicMock:
    queue = MagicMock()
    queue.enqueue = AsyncMock(return_value="job-123")
    queue.get_status = AsyncMock(return_value=None)
    queue.ping = AsyncMock(return_value=True)
    return queue


@pytest.fixture
def client(
    store: RecordStore,
    mock_queue: MagicMock,
    completion: MagicMock,
) -> Generator[TestClient, None, None]:
    """FastAPI test client with the process-wide collaborators replaced."""
    from app.api import deps
    from app.main import app

    app.dependency_overrides[deps.get_record_store] = lambda: store
    app.dependency_overrides[deps.get_job_queue] = lambda: mock_queue
    app.dependency_overrides[deps.get_completion_service] = lambda: completion

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user: User) -> dict[str, str]:
    return {"X-User-Id": user.id}
