"""Periodic and on-demand scheduling of fetch cycles."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import db
from .fetcher import DEFAULT_TIMEOUT, fetch_one
from .models import FetchOutcome

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 60
DEFAULT_WORKERS = 4


def _log_failure(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background refresh failed: %s", exc)


class Scheduler:
    """Drives fetch cycles on a fixed global cadence and on request.

    The periodic loop fetches due feeds one after another. On-demand requests
    (feed creation, explicit refresh) go to a small thread pool so callers are
    not blocked. All state lives in the store.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_WORKERS,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive.")
        self.session_factory = session_factory
        self.interval_seconds = interval_minutes * 60
        self.timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="feed-fetch"
        )

    def _fetch(self, feed_id: int) -> Optional[FetchOutcome]:
        try:
            outcome = fetch_one(self.session_factory, feed_id, timeout=self.timeout)
        except Exception:
            logger.exception("Unexpected failure while fetching feed %d", feed_id)
            return None
        if not outcome.ok:
            logger.warning("Feed %d: %s", feed_id, outcome.message)
        return outcome

    def _fetch_each(
        self, feed_ids: Iterable[int], stop_event: Optional[threading.Event] = None
    ) -> List[FetchOutcome]:
        outcomes = []
        for feed_id in feed_ids:
            if stop_event is not None and stop_event.is_set():
                logger.info("Stop requested; leaving remaining feeds for later")
                break
            outcome = self._fetch(feed_id)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def run_due(self, stop_event: Optional[threading.Event] = None) -> List[FetchOutcome]:
        """Fetch every feed whose interval has elapsed, in id order."""
        try:
            with self.session_factory() as session:
                feed_ids = db.list_due_feeds(session)
        except Exception:
            logger.exception("Could not list due feeds")
            return []

        if not feed_ids:
            logger.debug("No feeds due")
            return []

        logger.info("Fetching %d due feeds", len(feed_ids))
        outcomes = self._fetch_each(feed_ids, stop_event)
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "Pass complete: %d fetched, %d failed", len(outcomes), failed
        )
        return outcomes

    def run(self, stop_event: threading.Event) -> None:
        """Run a pass now and then on every tick until ``stop_event`` is set.

        Ticks are measured from the start of each pass. A pass that overruns
        the interval is followed immediately by the next one.
        """
        logger.info("Scheduler started (interval: %ds)", self.interval_seconds)
        while not stop_event.is_set():
            started = time.monotonic()
            self.run_due(stop_event)
            remaining = self.interval_seconds - (time.monotonic() - started)
            if stop_event.wait(max(remaining, 0.0)):
                break
        logger.info("Scheduler stopped")

    def refresh(self, feed_id: int) -> Optional[FetchOutcome]:
        """Fetch one feed now, ignoring its interval."""
        return self._fetch(feed_id)

    def refresh_all(self) -> List[FetchOutcome]:
        """Fetch every feed now, ignoring intervals."""
        with self.session_factory() as session:
            feed_ids = db.list_all_feeds(session)
        logger.info("Refreshing all %d feeds", len(feed_ids))
        return self._fetch_each(feed_ids)

    def trigger(self, feed_id: int) -> concurrent.futures.Future:
        """Fire-and-forget :meth:`refresh`."""
        logger.debug("Queued on-demand fetch of feed %d", feed_id)
        return self._executor.submit(self.refresh, feed_id)

    def trigger_all(self) -> concurrent.futures.Future:
        """Fire-and-forget :meth:`refresh_all`."""
        future = self._executor.submit(self.refresh_all)
        future.add_done_callback(_log_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
