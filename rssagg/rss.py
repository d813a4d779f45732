"""Fetching and decoding RSS documents."""

from __future__ import annotations

import urllib.error
import urllib.request
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, field

__all__ = ["RSSItem", "RSSFeed", "parse_feed", "url_to_feed"]


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    title: str = ""
    link: str = ""
    description: str = ""
    language: str = ""
    items: list[RSSItem] = field(default_factory=list)


_CHANNEL_FIELDS = {"title": "title", "link": "link", "description": "description", "language": "language"}
_ITEM_FIELDS = {"title": "title", "link": "link", "description": "description", "pubDate": "pub_date"}


def _local_name(element: ElementTree.Element) -> str | None:
    tag = element.tag
    if not isinstance(tag, str):
        return None
    return tag.rpartition("}")[2]


def _direct_text(element: ElementTree.Element) -> str:
    # Only character data directly inside the element; nested elements are skipped.
    return "".join([element.text or ""] + [child.tail or "" for child in element])


def _parse_item(element: ElementTree.Element) -> RSSItem:
    item = RSSItem()
    for child in element:
        attribute = _ITEM_FIELDS.get(_local_name(child))
        if attribute:
            setattr(item, attribute, _direct_text(child))
    return item


def parse_feed(data) -> RSSFeed:
    """Decode an RSS document given as bytes or text.

    Elements are matched by local name regardless of namespace; when an
    element repeats, the last one wins. Raises ``ElementTree.ParseError``
    for malformed XML.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    root = ElementTree.fromstring(data)
    feed = RSSFeed()
    for channel in root:
        if _local_name(channel) != "channel":
            continue
        for child in channel:
            name = _local_name(child)
            if name == "item":
                feed.items.append(_parse_item(child))
            elif name in _CHANNEL_FIELDS:
                setattr(feed, _CHANNEL_FIELDS[name], _direct_text(child))
    return feed


def url_to_feed(url: str, timeout: float = 10.0) -> RSSFeed:
    """Download ``url`` and decode its body, whatever the response status."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            body = response.read()
    except urllib.error.HTTPError as error:
        with error:
            body = error.read()
    return parse_feed(body)