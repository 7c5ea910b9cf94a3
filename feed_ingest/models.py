"""Shared data models for feed_ingest."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class FeedFormat(str, Enum):
    """Wire formats understood by the decoder."""

    RSS = "rss"
    ATOM = "atom"
    JSON = "json"


class FetchStatus(str, Enum):
    """Outcome of the most recent fetch cycle recorded on a feed."""

    UNSET = ""
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class RssEntry:
    """One <item> of an RSS 2.0 or RSS 1.0 (RDF) document."""

    FORMAT = FeedFormat.RSS

    title: str = ""
    link: str = ""
    description: str = ""
    guid: str = ""
    pub_date: str = ""


@dataclass
class AtomLink:
    href: str = ""
    rel: str = ""


@dataclass
class AtomEntry:
    """One <entry> of an Atom document, links kept in document order."""

    FORMAT = FeedFormat.ATOM

    title: str = ""
    id: str = ""
    summary: str = ""
    content: str = ""
    updated: str = ""
    published: str = ""
    links: List[AtomLink] = field(default_factory=list)


@dataclass
class JsonFeedEntry:
    """One element of a JSON Feed ``items`` array."""

    FORMAT = FeedFormat.JSON

    id: str = ""
    title: str = ""
    url: str = ""
    external_url: str = ""
    summary: str = ""
    content_text: str = ""
    content_html: str = ""
    date_published: str = ""
    date_modified: str = ""


@dataclass
class DecodedFeed:
    """Result of decoding a feed document."""

    format: FeedFormat
    entries: list


@dataclass
class CanonicalItem:
    """Normalized feed entry as handed to the store."""

    title: str
    link: str
    summary: str
    dedupe_key: str
    published_at: Optional[datetime] = None


@dataclass
class FeedRecord:
    """Persisted feed and its fetch health."""

    id: int
    name: str
    url: str
    fetch_interval_minutes: int
    last_fetched_at: Optional[datetime] = None
    last_status: FetchStatus = FetchStatus.UNSET
    last_error: Optional[str] = None


@dataclass
class FetchOutcome:
    """What happened during one fetch cycle of a single feed."""

    feed_id: int
    status: FetchStatus
    message: Optional[str] = None
    items_seen: int = 0
    items_stored: int = 0

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.SUCCESS
