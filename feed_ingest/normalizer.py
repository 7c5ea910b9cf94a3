"""Mapping of format-specific raw entries onto canonical items."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from .models import AtomEntry, CanonicalItem, FeedFormat, JsonFeedEntry, RssEntry
from .timestamps import parse_timestamp

ALTERNATE_RELS = ("", "alternate")


def _first_nonempty(*values: str) -> str:
    for value in values:
        value = (value or "").strip()
        if value:
            return value
    return ""


def _first_timestamp(values: Iterable[str]) -> Optional[datetime]:
    for value in values:
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
    return None


def _normalize_rss(entry: RssEntry) -> CanonicalItem:
    link = _first_nonempty(entry.link)
    return CanonicalItem(
        title=_first_nonempty(entry.title),
        link=link,
        summary=_first_nonempty(entry.description),
        dedupe_key=_first_nonempty(entry.guid, link),
        published_at=_first_timestamp([entry.pub_date]),
    )


def _atom_link(entry: AtomEntry) -> str:
    for link in entry.links:
        if (link.rel or "").strip() in ALTERNATE_RELS:
            return _first_nonempty(link.href, entry.id)
    return _first_nonempty(entry.id)


def _normalize_atom(entry: AtomEntry) -> CanonicalItem:
    link = _atom_link(entry)
    return CanonicalItem(
        title=_first_nonempty(entry.title),
        link=link,
        summary=_first_nonempty(entry.summary, entry.content),
        dedupe_key=_first_nonempty(entry.id, link),
        published_at=_first_timestamp([entry.published, entry.updated]),
    )


def _normalize_json(entry: JsonFeedEntry) -> CanonicalItem:
    link = _first_nonempty(entry.url, entry.external_url)
    return CanonicalItem(
        title=_first_nonempty(entry.title),
        link=link,
        summary=_first_nonempty(entry.summary, entry.content_text, entry.content_html),
        dedupe_key=_first_nonempty(entry.id, link),
        published_at=_first_timestamp([entry.date_published, entry.date_modified]),
    )


NORMALIZERS: Dict[FeedFormat, Callable[..., CanonicalItem]] = {
    FeedFormat.RSS: _normalize_rss,
    FeedFormat.ATOM: _normalize_atom,
    FeedFormat.JSON: _normalize_json,
}


def normalize(entry, feed_format: Optional[FeedFormat] = None) -> CanonicalItem:
    """Turn one raw entry into a canonical item.

    Never fails on missing data: absent fields become empty strings and an
    unparsable date becomes ``None``. ``dedupe_key`` may still be empty when an
    entry has neither identifier nor link; see :func:`ensure_dedupe_key`.
    """
    if feed_format is None:
        feed_format = entry.FORMAT
    return NORMALIZERS[FeedFormat(feed_format)](entry)


def synthesize_dedupe_key(item: CanonicalItem) -> str:
    """Build a key from title and publication time for entries without id or link.

    The key embeds the rendered timestamp, so a feed that changes how it writes
    dates will have such entries stored again under a new key.
    """
    published = item.published_at.isoformat() if item.published_at else ""
    return f"{item.title}-{published}"


def ensure_dedupe_key(item: CanonicalItem) -> CanonicalItem:
    if item.dedupe_key:
        return item
    return dataclasses.replace(item, dedupe_key=synthesize_dedupe_key(item))
