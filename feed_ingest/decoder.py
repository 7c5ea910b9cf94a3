"""Feed document decoding for RSS, Atom and JSON Feed."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, List, Union
from xml.etree import ElementTree as ET

from .errors import EmptyDocumentError, MalformedDocumentError, UnsupportedFormatError
from .models import AtomEntry, AtomLink, DecodedFeed, FeedFormat, JsonFeedEntry, RssEntry

logger = logging.getLogger(__name__)

RSS_ROOTS = ("rss", "rdf")
ATOM_ROOTS = ("feed",)

JSON_FIELDS = (
    "id",
    "title",
    "url",
    "external_url",
    "summary",
    "content_text",
    "content_html",
    "date_published",
    "date_modified",
)


def decode(document: Union[bytes, str]) -> DecodedFeed:
    """Detect the format of ``document`` and extract its raw entries.

    Raises:
        EmptyDocumentError: Nothing but whitespace was supplied.
        UnsupportedFormatError: Well-formed XML with an unknown root element.
        MalformedDocumentError: The XML or JSON could not be parsed.
    """
    if isinstance(document, str):
        document = document.encode("utf-8")

    trimmed = document.strip()
    if trimmed.startswith(codecs.BOM_UTF8):
        trimmed = trimmed[len(codecs.BOM_UTF8):].strip()
    if not trimmed:
        raise EmptyDocumentError("empty feed")

    if trimmed[:1] in (b"{", b"["):
        return DecodedFeed(FeedFormat.JSON, _decode_json_feed(trimmed))

    try:
        root = ET.fromstring(trimmed)
    except ET.ParseError as exc:
        raise MalformedDocumentError(f"read xml: {exc}") from exc

    root_name = _local_name(root.tag)
    if root_name.lower() in RSS_ROOTS:
        entries = _decode_rss(root)
        logger.debug("Decoded %d RSS items", len(entries))
        return DecodedFeed(FeedFormat.RSS, entries)
    if root_name.lower() in ATOM_ROOTS:
        entries = _decode_atom(root)
        logger.debug("Decoded %d Atom entries", len(entries))
        return DecodedFeed(FeedFormat.ATOM, entries)

    raise UnsupportedFormatError(f"unsupported feed root: {root_name}")


def _split_tag(tag: str):
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return "", tag


def _local_name(tag: str) -> str:
    return _split_tag(tag)[1]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    """Direct children called ``name`` that share ``element``'s namespace."""
    namespace = _split_tag(element.tag)[0]
    return [
        child
        for child in element
        if isinstance(child.tag, str) and _split_tag(child.tag) == (namespace, name)
    ]


def _child_text(element: ET.Element, name: str) -> str:
    matches = _children(element, name)
    if not matches:
        return ""
    return "".join(matches[0].itertext())


def _decode_rss(root: ET.Element) -> List[RssEntry]:
    # RSS 2.0 nests items in <channel>; RSS 1.0 puts them beside it.
    items: List[ET.Element] = []
    for element in root:
        if not isinstance(element.tag, str):
            continue
        local = _local_name(element.tag)
        if local == "channel":
            items.extend(
                child
                for child in element
                if isinstance(child.tag, str) and _local_name(child.tag) == "item"
            )
        elif local == "item":
            items.append(element)

    return [
        RssEntry(
            title=_child_text(item, "title"),
            link=_child_text(item, "link"),
            description=_child_text(item, "description"),
            guid=_child_text(item, "guid"),
            pub_date=_child_text(item, "pubDate"),
        )
        for item in items
    ]


def _decode_atom(root: ET.Element) -> List[AtomEntry]:
    entries = []
    for entry in _children(root, "entry"):
        links = [
            AtomLink(href=link.get("href", ""), rel=link.get("rel", ""))
            for link in _children(entry, "link")
        ]
        entries.append(
            AtomEntry(
                title=_child_text(entry, "title"),
                id=_child_text(entry, "id"),
                summary=_child_text(entry, "summary"),
                content=_child_text(entry, "content"),
                updated=_child_text(entry, "updated"),
                published=_child_text(entry, "published"),
                links=links,
            )
        )
    return entries


def _decode_json_feed(data: bytes) -> List[JsonFeedEntry]:
    try:
        payload = json.loads(data)
    except (ValueError, UnicodeDecodeError, RecursionError) as exc:
        raise MalformedDocumentError(f"read json: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedDocumentError("read json: top-level value is not an object")

    items = payload.get("items") or []
    if not isinstance(items, list):
        raise MalformedDocumentError("read json: items is not a list")

    entries = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            logger.debug("Skipping JSON Feed item %d: not an object", position)
            continue
        entries.append(
            JsonFeedEntry(**{name: _json_string(item.get(name)) for name in JSON_FIELDS})
        )
    logger.debug("Decoded %d JSON Feed items", len(entries))
    return entries


def _json_string(value: Any) -> str:
    if value is None or isinstance(value, (bool, dict, list)):
        return ""
    return str(value)
