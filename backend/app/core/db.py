from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine, SQLModel

from app.models import draft_reply, email, email_summary, sync_run, tone_profile, user  # noqa: F401
from app.core.config import settings


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for the configured database.

    SQLite is used for local runs and tests. An in-memory SQLite database only
    lives as long as its connection, so it is pinned to a single shared one.
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)


def init_db(bind: Engine | None = None) -> None:
    SQLModel.metadata.create_all(bind or engine)
