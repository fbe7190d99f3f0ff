"""Record store for the job pipeline.

All reads and writes of users, emails, summaries, drafts, tone profiles and
sync runs go through ``RecordStore``. Each method opens and commits its own
session, so orchestrators running concurrently never share one.

Concurrency is optimistic: writes are keyed by unique identifiers and the
database's unique constraints settle races on the same key. A lost insert
race is rolled back and either retried as an update (emails, tone profiles)
or reported as "already exists" (summaries).
"""

import logging
from datetime import datetime, timezone
from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.integrations.schemas import NormalizedEmail
from app.models.draft_reply import DraftReply
from app.models.email import MUTABLE_EMAIL_FIELDS, Email
from app.models.email_summary import EmailSummary
from app.models.enums import SyncStatus
from app.models.sync_run import SyncRun
from app.models.tone_profile import ToneProfile
from app.models.user import User

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    """Keyed find/create/update/upsert access to pipeline records."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    # Users

    def get_user(self, user_id: str) -> User | None:
        with self.session() as session:
            return session.get(User, user_id)

    def list_users_with_credentials(self) -> list[User]:
        with self.session() as session:
            statement = select(User).where(User.access_token.is_not(None))
            return list(session.exec(statement).all())

    # Emails

    def _find_email(self, session: Session, user_id: str, external_id: str) -> Email | None:
        statement = select(Email).where(
            Email.user_id == user_id,
            Email.external_id == external_id,
        )
        return session.exec(statement).first()

    def upsert_email(self, user_id: str, fetched: NormalizedEmail) -> tuple[Email, bool]:
        """Merge a fetched email into local state by (user_id, external_id).

        A new message is stored whole. A known one only has its read flag,
        importance and categories refreshed; subject, body and timestamps
        are never overwritten.

        Returns:
            (email, created)
        """
        with self.session() as session:
            existing = self._find_email(session, user_id, fetched.external_id)

            if existing is None:
                record = Email(user_id=user_id, **fetched.model_dump())
                session.add(record)
                try:
                    session.commit()
                except IntegrityError:
                    # Another handler inserted the same message first
                    session.rollback()
                    existing = self._find_email(session, user_id, fetched.external_id)
                    if existing is None:
                        raise
                else:
                    session.refresh(record)
                    return record, True

            for field in MUTABLE_EMAIL_FIELDS:
                value = getattr(fetched, field)
                setattr(existing, field, list(value) if isinstance(value, list) else value)
            existing.updated_at = _utcnow()
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return existing, False

    def get_email(self, email_id: str, user_id: str | None = None) -> Email | None:
        with self.session() as session:
            email = session.get(Email, email_id)
            if email is None or (user_id is not None and email.user_id != user_id):
                return None
            return email

    def list_emails(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 50,
        unread_only: bool = False,
    ) -> tuple[list[Email], int]:
        with self.session() as session:
            conditions = [Email.user_id == user_id]
            if unread_only:
                conditions.append(Email.is_read == False)  # noqa: E712

            total = session.exec(
                select(func.count()).select_from(Email).where(*conditions)
            ).one()
            statement = (
                select(Email)
                .where(*conditions)
                .order_by(Email.received_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(session.exec(statement).all()), total

    def find_user_emails(self, user_id: str, email_ids: list[str]) -> list[Email]:
        with self.session() as session:
            statement = select(Email).where(
                Email.user_id == user_id,
                Email.id.in_(email_ids),
            )
            return list(session.exec(statement).all())

    def mark_email_read(self, email_id: str, user_id: str) -> bool:
        with self.session() as session:
            result = session.exec(
                update(Email)
                .where(Email.id == email_id, Email.user_id == user_id)
                .values(is_read=True, updated_at=_utcnow())
            )
            session.commit()
            return result.rowcount > 0

    def set_email_categories(self, email_id: str, categories: list[str]) -> None:
        with self.session() as session:
            email = session.get(Email, email_id)
            if email is None:
                return
            email.categories = list(categories)
            email.updated_at = _utcnow()
            session.add(email)
            session.commit()

    def recent_sent_bodies(self, user_id: str, sender: str, limit: int = 20) -> list[str]:
        """Bodies of the user's own stored emails, newest first, empty ones dropped."""
        with self.session() as session:
            statement = (
                select(Email.body)
                .where(
                    Email.user_id == user_id,
                    func.lower(Email.sender) == sender.lower(),
                )
                .order_by(Email.received_at.desc())
                .limit(limit)
            )
            return [body for body in session.exec(statement).all() if body]

    # Summaries

    def get_summary(self, email_id: str) -> EmailSummary | None:
        with self.session() as session:
            statement = select(EmailSummary).where(EmailSummary.email_id == email_id)
            return session.exec(statement).first()

    def create_summary_if_absent(self, summary: EmailSummary) -> bool:
        """Insert a summary unless one exists for the email.

        Returns:
            True if this call created the row.
        """
        with self.session() as session:
            statement = select(EmailSummary.id).where(EmailSummary.email_id == summary.email_id)
            if session.exec(statement).first() is not None:
                return False

            session.add(summary)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(
                    "Summary created concurrently, keeping existing",
                    extra={"email_id": summary.email_id}
                )
                return False
            return True

    # Drafts

    def create_draft_reply(self, draft: DraftReply) -> DraftReply:
        with self.session() as session:
            session.add(draft)
            session.commit()
            session.refresh(draft)
            return draft

    def list_draft_replies(self, email_id: str, limit: int = 5) -> list[DraftReply]:
        with self.session() as session:
            statement = (
                select(DraftReply)
                .where(DraftReply.email_id == email_id)
                .order_by(DraftReply.created_at.desc())
                .limit(limit)
            )
            return list(session.exec(statement).all())

    # Tone profiles

    def get_tone_profile(self, user_id: str) -> ToneProfile | None:
        with self.session() as session:
            statement = select(ToneProfile).where(ToneProfile.user_id == user_id)
            return session.exec(statement).first()

    def upsert_tone_profile(
        self,
        user_id: str,
        formality_level: float,
        average_length: int,
        common_phrases: list[str],
        signature_style: str,
        sample_count: int,
    ) -> ToneProfile:
        """Create or fully replace the user's tone profile."""
        values = {
            "formality_level": formality_level,
            "average_length": average_length,
            "common_phrases": list(common_phrases),
            "signature_style": signature_style,
            "sample_count": sample_count,
        }

        with self.session() as session:
            statement = select(ToneProfile).where(ToneProfile.user_id == user_id)
            profile = session.exec(statement).first()

            if profile is None:
                profile = ToneProfile(user_id=user_id, **values)
                session.add(profile)
                try:
                    session.commit()
                    session.refresh(profile)
                    return profile
                except IntegrityError:
                    session.rollback()
                    profile = session.exec(statement).one()

            for field, value in values.items():
                setattr(profile, field, value)
            profile.updated_at = _utcnow()
            session.add(profile)
            session.commit()
            session.refresh(profile)
            return profile

    # Sync runs

    def create_sync_run(self, user_id: str, provider: str, sync_type: str) -> SyncRun:
        with self.session() as session:
            sync_run = SyncRun(user_id=user_id, provider=provider, sync_type=sync_type)
            session.add(sync_run)
            session.commit()
            session.refresh(sync_run)
            return sync_run

    def get_sync_run(self, sync_run_id: str) -> SyncRun | None:
        with self.session() as session:
            return session.get(SyncRun, sync_run_id)

    def _finish_sync_run(self, sync_run_id: str, **values) -> bool:
        # Conditional on in_progress: terminal states are written once
        with self.session() as session:
            result = session.exec(
                update(SyncRun)
                .where(
                    SyncRun.id == sync_run_id,
                    SyncRun.status == SyncStatus.IN_PROGRESS.value,
                )
                .values(completed_at=_utcnow(), **values)
            )
            session.commit()
            updated = result.rowcount

        if updated == 0:
            logger.warning(
                "Sync run already finished, terminal state left unchanged",
                extra={"sync_run_id": sync_run_id, "attempted_status": values.get("status")}
            )
            return False
        return True

    def complete_sync_run(self, sync_run_id: str, emails_count: int) -> bool:
        return self._finish_sync_run(
            sync_run_id,
            status=SyncStatus.SUCCESS.value,
            emails_count=emails_count,
        )

    def fail_sync_run(self, sync_run_id: str, error: str) -> bool:
        return self._finish_sync_run(
            sync_run_id,
            status=SyncStatus.FAILED.value,
            error=error,
        )

    def fail_stale_sync_runs(self, started_before: datetime, error: str) -> int:
        """Fail every run still in progress that started before the cutoff."""
        with self.session() as session:
            result = session.exec(
                update(SyncRun)
                .where(
                    SyncRun.status == SyncStatus.IN_PROGRESS.value,
                    SyncRun.started_at < started_before,
                )
                .values(status=SyncStatus.FAILED.value, error=error, completed_at=_utcnow())
            )
            session.commit()
            return result.rowcount

    def last_successful_sync_started_at(self, user_id: str) -> datetime | None:
        with self.session() as session:
            statement = (
                select(SyncRun.started_at)
                .where(
                    SyncRun.user_id == user_id,
                    SyncRun.status == SyncStatus.SUCCESS.value,
                )
                .order_by(SyncRun.started_at.desc())
                .limit(1)
            )
            return session.exec(statement).first()

    def list_sync_runs(self, user_id: str, limit: int = 20) -> list[SyncRun]:
        with self.session() as session:
            statement = (
                select(SyncRun)
                .where(SyncRun.user_id == user_id)
                .order_by(SyncRun.started_at.desc())
                .limit(limit)
            )
            return list(session.exec(statement).all())
