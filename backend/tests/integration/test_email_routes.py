"""Integration tests for the email, job and health routes.

The record store runs on in-memory SQLite; the job queue and the mail
provider are mocked.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.errors import TransportError
from app.jobs.queue import SYNC_TOPIC, JobState, JobStatus
from app.models.draft_reply import DraftReply
from app.models.email_summary import EmailSummary
from app.models.user import User


@pytest.mark.integration
def test_requires_user_header(client: TestClient):
    response = client.get("/api/emails")
    assert response.status_code == 401


@pytest.mark.integration
def test_unknown_user_rejected(client: TestClient):
    response = client.get("/api/emails", headers={"X-User-Id": "nobody"})
    assert response.status_code == 401


@pytest.mark.integration
def test_list_emails_with_pagination_and_summary(client: TestClient, store, user, auth_headers, email_factory):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    saved = []
    for i in range(3):
        email, _ = store.upsert_email(user.id, email_factory(f"msg-{i}", received_at=base + timedelta(hours=i)))
        saved.append(email)
    store.create_summary_if_absent(EmailSummary(email_id=saved[2].id, summary="Newest one"))

    response = client.get("/api/emails?page=1&limit=2", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert [e["external_id"] for e in data["emails"]] == ["msg-2", "msg-1"]
    assert data["emails"][0]["summary"]["summary"] == "Newest one"
    assert data["emails"][1]["summary"] is None


@pytest.mark.integration
def test_start_sync_enqueues_full_sync(client: TestClient, user, auth_headers, mock_queue):
    response = client.post("/api/emails/sync", headers=auth_headers)

    assert response.status_code == 202
    assert response.json()["data"]["job_id"] == "job-123"
    mock_queue.enqueue.assert_awaited_once_with(
        SYNC_TOPIC, {"userId": user.id, "provider": "gmail", "syncType": "full"}
    )


@pytest.mark.integration
def test_get_email_detail_with_drafts(client: TestClient, store, user, auth_headers, email_factory):
    email, _ = store.upsert_email(user.id, email_factory())
    store.create_draft_reply(DraftReply(
        email_id=email.id,
        user_id=user.id,
        shorthand="yes",
        generated_reply="Yes, that works.",
        tone="professional",
    ))

    response = client.get(f"/api/emails/{email.id}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["subject"] == "Subject msg-1"
    assert data["summary"] is None
    assert [d["generated_reply"] for d in data["draft_replies"]] == ["Yes, that works."]


@pytest.mark.integration
def test_get_email_not_found(client: TestClient, auth_headers):
    response = client.get("/api/emails/missing", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.integration
def test_mark_read(client: TestClient, store, user, auth_headers, email_factory):
    email, _ = store.upsert_email(user.id, email_factory())

    response = client.patch(f"/api/emails/{email.id}/read", headers=auth_headers)

    assert response.status_code == 200
    assert store.get_email(email.id).is_read is True
    assert client.patch("/api/emails/missing/read", headers=auth_headers).status_code == 404


@pytest.mark.integration
def test_sync_runs_history(client: TestClient, store, user, auth_headers):
    run = store.create_sync_run(user.id, "gmail", "full")
    store.complete_sync_run(run.id, 7)

    response = client.get("/api/emails/sync-runs", headers=auth_headers)

    assert response.status_code == 200
    runs = response.json()["data"]
    assert runs[0]["status"] == "success"
    assert runs[0]["emails_count"] == 7


@pytest.mark.integration
def test_send_email_uses_user_provider(client: TestClient, auth_headers):
    provider = MagicMock()
    provider.send_email = AsyncMock(return_value=None)

    with patch("app.api.routes.emails.get_mail_provider", return_value=provider) as factory:
        response = client.post(
            "/api/emails/send",
            headers=auth_headers,
            json={"to": "bob@example.com", "subject": "Hi", "body": "<p>Hello</p>"},
        )

    assert response.status_code == 200
    factory.assert_called_once_with("gmail")
    provider.send_email.assert_awaited_once_with(
        "ya29.test-access-token", ["bob@example.com"], "Hi", "<p>Hello</p>"
    )


@pytest.mark.integration
def test_send_email_provider_error_is_rendered(client: TestClient, auth_headers):
    provider = MagicMock()
    provider.send_email = AsyncMock(side_effect=TransportError("Gmail API error", status_code=502))

    with patch("app.api.routes.emails.get_mail_provider", return_value=provider):
        response = client.post(
            "/api/emails/send",
            headers=auth_headers,
            json={"to": ["bob@example.com"], "subject": "Hi", "body": "Hello"},
        )

    assert response.status_code == 502
    assert response.json() == {
        "success": False,
        "error": "Gmail API error",
        "error_code": "transport_error",
    }


@pytest.mark.integration
def test_send_email_with_expired_credential(client: TestClient, store, user, auth_headers):
    with store.session() as session:
        record = session.get(User, user.id)
        record.token_expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        session.add(record)
        session.commit()

    response = client.post(
        "/api/emails/send",
        headers=auth_headers,
        json={"to": ["bob@example.com"], "subject": "Hi", "body": "Hello"},
    )

    assert response.status_code == 401
    assert response.json()["error_code"] == "auth_error"


@pytest.mark.integration
def test_job_status(client: TestClient, user, auth_headers, mock_queue):
    mock_queue.get_status.return_value = JobStatus(
        job_id="job-123",
        topic=SYNC_TOPIC,
        state=JobState.COMPLETED,
        attempts=1,
        user_id=user.id,
    )

    response = client.get("/api/jobs/job-123", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"] == "completed"
    assert data["attempts"] == 1


@pytest.mark.integration
def test_job_status_of_another_user_is_hidden(client: TestClient, auth_headers, mock_queue):
    mock_queue.get_status.return_value = JobStatus(
        job_id="job-999",
        topic=SYNC_TOPIC,
        state=JobState.FAILED,
        attempts=3,
        error="Gmail authorization failed",
        user_id="someone-else",
    )

    response = client.get("/api/jobs/job-999", headers=auth_headers)

    assert response.status_code == 404


@pytest.mark.integration
def test_job_status_unknown(client: TestClient, auth_headers):
    assert client.get("/api/jobs/nope", headers=auth_headers).status_code == 404


@pytest.mark.integration
def test_health_check_without_started_queue(client: TestClient):
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["services"]["database"] == "healthy"
    assert body["services"]["queue"] == "not started"
