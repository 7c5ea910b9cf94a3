"""Database layer backing the ingestion store gateway."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .errors import StorageError
from .models import FeedRecord, FetchStatus

logger = logging.getLogger(__name__)

DEFAULT_FETCH_INTERVAL_MINUTES = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class FeedModel(Base):
    """A subscribed feed and the result of its last fetch."""

    __tablename__ = "feeds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False, unique=True)
    fetch_interval_minutes = Column(
        Integer, nullable=False, default=DEFAULT_FETCH_INTERVAL_MINUTES
    )
    last_fetched_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ItemModel(Base):
    """A stored entry; ``guid`` holds the dedupe key."""

    __tablename__ = "items"
    __table_args__ = (UniqueConstraint("feed_id", "guid", name="uq_items_feed_guid"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_id = Column(
        Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(Text, nullable=False)
    link = Column(Text, nullable=False)
    summary = Column(Text, nullable=True)
    guid = Column(Text, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine and create missing tables."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


@contextlib.contextmanager
def _storage_errors(session: Session, action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(f"{action}: {exc}") from exc


def _to_record(feed: FeedModel) -> FeedRecord:
    return FeedRecord(
        id=feed.id,
        name=feed.name,
        url=feed.url,
        fetch_interval_minutes=feed.fetch_interval_minutes,
        last_fetched_at=_as_utc(feed.last_fetched_at),
        last_status=FetchStatus(feed.last_status or ""),
        last_error=feed.last_error,
    )


def create_feed(
    session: Session,
    name: str,
    url: str,
    fetch_interval_minutes: int = DEFAULT_FETCH_INTERVAL_MINUTES,
) -> FeedRecord:
    """Register a feed, or rename the existing feed with the same URL."""
    with _storage_errors(session, "create feed"):
        existing = session.execute(
            select(FeedModel).where(FeedModel.url == url)
        ).scalar_one_or_none()

        if existing:
            existing.name = name
            feed = existing
        else:
            feed = FeedModel(
                name=name, url=url, fetch_interval_minutes=fetch_interval_minutes
            )
            session.add(feed)

        session.commit()
        return _to_record(feed)


def get_feed(session: Session, feed_id: int) -> Optional[FeedRecord]:
    with _storage_errors(session, "get feed"):
        # other sessions (fetch workers) may have updated the row
        feed = session.get(FeedModel, feed_id, populate_existing=True)
        return _to_record(feed) if feed else None


def list_all_feeds(session: Session) -> List[int]:
    """Return every feed id in ascending order."""
    with _storage_errors(session, "list feeds"):
        return list(session.execute(select(FeedModel.id).order_by(FeedModel.id)).scalars())


def list_due_feeds(session: Session, now: Optional[datetime] = None) -> List[int]:
    """Return ids of feeds never fetched or whose own interval has elapsed."""
    now = _as_utc(now) or _utcnow()
    with _storage_errors(session, "list due feeds"):
        rows = session.execute(
            select(
                FeedModel.id, FeedModel.fetch_interval_minutes, FeedModel.last_fetched_at
            ).order_by(FeedModel.id)
        ).all()

    due = []
    for feed_id, interval, last_fetched_at in rows:
        last_fetched_at = _as_utc(last_fetched_at)
        if last_fetched_at is None or last_fetched_at <= now - timedelta(minutes=interval):
            due.append(feed_id)
    logger.debug("%d of %d feeds are due", len(due), len(rows))
    return due


def get_feed_url(session: Session, feed_id: int) -> Optional[str]:
    """Return the feed URL, or ``None`` if the feed no longer exists."""
    with _storage_errors(session, "get feed url"):
        return session.execute(
            select(FeedModel.url).where(FeedModel.id == feed_id)
        ).scalar_one_or_none()


def _insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    raise StorageError(f"unsupported database dialect: {dialect}")


def upsert_item(
    session: Session,
    feed_id: int,
    title: str,
    link: str,
    summary: str,
    dedupe_key: str,
    published_at: Optional[datetime],
) -> bool:
    """Insert an item unless ``(feed_id, dedupe_key)`` is already stored.

    Existing rows are never updated. Returns True when a row was inserted.
    """
    insert = _insert(session)
    stmt = (
        insert(ItemModel)
        .values(
            feed_id=feed_id,
            title=title,
            link=link,
            summary=summary,
            guid=dedupe_key,
            published_at=_as_utc(published_at),
            created_at=_utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["feed_id", "guid"])
    )
    with _storage_errors(session, "store item"):
        result = session.execute(stmt)
        session.commit()
    return result.rowcount == 1


def record_fetch_outcome(
    session: Session,
    feed_id: int,
    status: FetchStatus,
    error_message: Optional[str] = None,
    fetched_at: Optional[datetime] = None,
) -> bool:
    """Stamp the feed with the result of a fetch attempt.

    ``last_error`` is cleared unless the status is an error. Returns False when
    the feed no longer exists.
    """
    status = FetchStatus(status)
    with _storage_errors(session, "record fetch outcome"):
        feed = session.get(FeedModel, feed_id)
        if feed is None:
            return False
        feed.last_fetched_at = _as_utc(fetched_at) or _utcnow()
        feed.last_status = status.value or None
        feed.last_error = error_message if status is FetchStatus.ERROR else None
        session.commit()
    return True


def get_items(session: Session, feed_id: int) -> List[dict]:
    """Return the stored items of a feed in insertion order."""
    with _storage_errors(session, "get items"):
        rows = session.execute(
            select(ItemModel).where(ItemModel.feed_id == feed_id).order_by(ItemModel.id)
        ).scalars()
        return [
            {
                "id": row.id,
                "title": row.title,
                "link": row.link,
                "summary": row.summary,
                "dedupe_key": row.guid,
                "published_at": _as_utc(row.published_at),
            }
            for row in rows
        ]


def count_items(session: Session, feed_id: int) -> int:
    with _storage_errors(session, "count items"):
        return session.execute(
            select(func.count()).select_from(ItemModel).where(ItemModel.feed_id == feed_id)
        ).scalar_one()
