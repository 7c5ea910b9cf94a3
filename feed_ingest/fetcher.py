"""Single-feed fetch cycle: download, decode, normalize, store, record."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List

import requests
from sqlalchemy.orm import Session, sessionmaker

from . import db
from .decoder import decode
from .errors import FeedError, HTTPStatusError, StorageError, TransportError
from .models import CanonicalItem, FetchOutcome, FetchStatus
from .normalizer import ensure_dedupe_key, normalize

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
USER_AGENT = "feed-ingest/0.1"


def download_feed(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Fetch the raw feed document with a single bounded GET."""
    logger.debug("Downloading %s", url)
    try:
        response = requests.get(
            url, timeout=timeout, headers={"User-Agent": USER_AGENT}
        )
    except requests.RequestException as exc:
        raise TransportError(str(exc)) from exc

    if not 200 <= response.status_code < 300:
        raise HTTPStatusError(response.status_code, response.reason or "")
    return response.content


def parse_items(document: bytes) -> List[CanonicalItem]:
    """Decode a document into canonical items, each with a non-empty key."""
    decoded = decode(document)
    return [ensure_dedupe_key(normalize(entry, decoded.format)) for entry in decoded.entries]


def store_items(session: Session, feed_id: int, items: Iterable[CanonicalItem]) -> int:
    """Insert-or-skip every item. Stops at the first storage failure."""
    stored = 0
    for item in items:
        inserted = db.upsert_item(
            session,
            feed_id,
            title=item.title,
            link=item.link,
            summary=item.summary,
            dedupe_key=item.dedupe_key,
            published_at=item.published_at,
        )
        if inserted:
            stored += 1
    return stored


def _record(session: Session, outcome: FetchOutcome) -> FetchOutcome:
    try:
        recorded = db.record_fetch_outcome(
            session,
            outcome.feed_id,
            outcome.status,
            error_message=outcome.message,
            fetched_at=datetime.now(timezone.utc),
        )
    except StorageError:
        logger.exception("Could not record fetch outcome for feed %d", outcome.feed_id)
        return outcome

    if not recorded:
        logger.info("Feed %d was deleted during its fetch cycle", outcome.feed_id)
    return outcome


def fetch_one(
    session_factory: sessionmaker[Session],
    feed_id: int,
    timeout: float = DEFAULT_TIMEOUT,
) -> FetchOutcome:
    """Run one fetch cycle for ``feed_id`` and record how it went.

    Feed-scoped failures never propagate; they are stored on the feed as
    ``last_status = error`` together with the message.
    """
    with session_factory() as session:
        try:
            url = db.get_feed_url(session, feed_id)
        except StorageError as exc:
            logger.warning("Feed %d: %s", feed_id, exc)
            return _record(session, FetchOutcome(feed_id, FetchStatus.ERROR, str(exc)))

        if url is None:
            logger.info("Feed %d no longer exists; skipping", feed_id)
            return FetchOutcome(feed_id, FetchStatus.ERROR, f"feed {feed_id} not found")

        if not url.strip():
            outcome = FetchOutcome(feed_id, FetchStatus.ERROR, "feed has no URL configured")
            logger.warning("Feed %d: %s", feed_id, outcome.message)
            return _record(session, outcome)

        try:
            document = download_feed(url.strip(), timeout=timeout)
            items = parse_items(document)
            stored = store_items(session, feed_id, items)
        except FeedError as exc:
            logger.warning("Feed %d (%s) failed: %s", feed_id, url, exc)
            outcome = FetchOutcome(feed_id, FetchStatus.ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Feed %d (%s) failed unexpectedly", feed_id, url)
            session.rollback()
            outcome = FetchOutcome(feed_id, FetchStatus.ERROR, str(exc) or type(exc).__name__)
        else:
            logger.info(
                "Feed %d (%s): %d entries, %d new", feed_id, url, len(items), stored
            )
            outcome = FetchOutcome(
                feed_id, FetchStatus.SUCCESS, items_seen=len(items), items_stored=stored
            )

        return _record(session, outcome)
