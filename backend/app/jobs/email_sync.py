"""
Email sync orchestrator.

Consumes ``email-sync`` jobs: resolves the user's credential, fetches one
bounded page from their provider and merges every message into the record
store by (user_id, external_id). Each run leaves a SyncRun audit record that
starts as in_progress and ends as success or failed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from opentelemetry.trace import Status, StatusCode

from app.core.config import settings
from app.core.errors import AuthError
from app.core.tracing import get_tracer, safe_span_attributes
from app.integrations.providers import MailProvider, get_mail_provider
from app.jobs.payloads import EmailSyncJob, parse_payload
from app.jobs.queue import Job
from app.models.enums import SyncType
from app.models.user import User
from app.store.records import RecordStore

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

CANCELLED_ERROR = "Sync cancelled before completion"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_access_token(user: User | None, now: datetime | None = None) -> str:
    """Current bearer credential for a user.

    Raises:
        AuthError: Unknown user, no credential, or credential already expired
    """
    if user is None:
        raise AuthError("User not found or not authenticated")
    if not user.access_token:
        raise AuthError("User has no provider credential")

    now = now or datetime.now(timezone.utc)
    if user.token_expires_at is not None and _as_utc(user.token_expires_at) <= now:
        raise AuthError("Provider credential has expired")
    return user.access_token


class EmailSyncOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        provider_factory: Callable[[str], MailProvider] = get_mail_provider,
        page_size: int | None = None,
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.page_size = page_size or settings.SYNC_PAGE_SIZE

    async def handle(self, job: Job) -> int:
        """Queue handler for the ``email-sync`` topic."""
        request = parse_payload(EmailSyncJob, job.payload)
        return await self.run(request)

    def _watermark(self, request: EmailSyncJob) -> datetime | None:
        if request.sync_type != SyncType.INCREMENTAL:
            return None
        if request.last_sync_time is not None:
            return _as_utc(request.last_sync_time)

        last_success = self.store.last_successful_sync_started_at(request.user_id)
        return _as_utc(last_success) if last_success is not None else None

    async def run(self, request: EmailSyncJob) -> int:
        """Sync one user's mailbox.

        Returns:
            Number of emails persisted in this run

        Raises:
            AuthError: Credential missing or expired
            TransportError: The provider fetch failed
        """
        with tracer.start_as_current_span("email_sync.run") as span:
            span.set_attributes(safe_span_attributes(
                user_id=request.user_id,
                provider=request.provider,
                sync_type=request.sync_type,
            ))

            sync_run = self.store.create_sync_run(
                request.user_id, request.provider, request.sync_type
            )
            span.set_attribute("sync_run_id", sync_run.id)

            try:
                access_token = resolve_access_token(self.store.get_user(request.user_id))
                since = self._watermark(request)

                provider = self.provider_factory(request.provider)
                fetched = await provider.fetch_emails(
                    access_token, since=since, page_size=self.page_size
                )
            except asyncio.CancelledError:
                self.store.fail_sync_run(sync_run.id, CANCELLED_ERROR)
                raise
            except Exception as e:
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(
                    "Email sync failed",
                    extra={
                        "user_id": request.user_id,
                        "provider": request.provider,
                        "sync_run_id": sync_run.id,
                        "error": message,
                    }
                )
                self.store.fail_sync_run(sync_run.id, message)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise

            saved = self._merge(request.user_id, fetched, sync_run.id)
            self.store.complete_sync_run(sync_run.id, saved)

            logger.info(
                f"Synced {saved} emails",
                extra={
                    "user_id": request.user_id,
                    "provider": request.provider,
                    "sync_run_id": sync_run.id,
                    "fetched_count": len(fetched),
                    "saved_count": saved,
                }
            )
            span.set_attributes(safe_span_attributes(
                fetched_count=len(fetched),
                saved_count=saved,
            ))
            span.set_status(Status(StatusCode.OK))
            return saved

    def _merge(self, user_id: str, fetched: list, sync_run_id: str) -> int:
        saved = 0
        for message in fetched:
            try:
                self.store.upsert_email(user_id, message)
            except Exception as e:
                # One bad message never aborts the rest of the page
                logger.warning(
                    "Failed to save email, continuing",
                    extra={
                        "user_id": user_id,
                        "sync_run_id": sync_run_id,
                        "external_id": getattr(message, "external_id", None),
                        "error": str(e),
                    }
                )
                continue
            saved += 1
        return saved
