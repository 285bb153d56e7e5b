"""Fetching and parsing RSS feeds."""

from __future__ import annotations

import html
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from http import HTTPStatus


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded or parsed."""


@dataclass
class RSSItem:
    """One entry of a feed."""

    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    """A feed's channel and its items."""

    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RSSItem] = field(default_factory=list)


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _direct_text(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


_ITEM_FIELDS = {"title": "title", "link": "link", "description": "description", "pubDate": "pub_date"}
_CHANNEL_FIELDS = {"title": "title", "link": "link", "description": "description"}


def _parse_item(element: ET.Element) -> RSSItem:
    item = RSSItem()
    for child in element:
        attr = _ITEM_FIELDS.get(_local_name(child.tag))
        if attr is not None:
            setattr(item, attr, _direct_text(child))
    item.title = html.unescape(item.title)
    item.description = html.unescape(item.description)
    return item


def parse_feed(data: bytes | str) -> RSSFeed:
    """Parse an RSS document, unescaping HTML entities in titles and descriptions."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FeedFetchError(f"invalid feed XML: {exc}") from exc
    feed = RSSFeed()
    for channel in root:
        if _local_name(channel.tag) != "channel":
            continue
        for child in channel:
            name = _local_name(child.tag)
            if name == "item":
                feed.items.append(_parse_item(child))
            elif name in _CHANNEL_FIELDS:
                setattr(feed, _CHANNEL_FIELDS[name], _direct_text(child))
    feed.title = html.unescape(feed.title)
    feed.description = html.unescape(feed.description)
    return feed


def fetch_feed(url: str, timeout: float | None = None) -> RSSFeed:
    """Download the feed at ``url`` and parse it."""
    request = urllib.request.Request(url, headers={"User-Agent": "gator"}, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            status = response.status
            if status != HTTPStatus.OK:
                raise FeedFetchError(
                    f"unexpected HTTP status: {status} {response.reason} ({status})"
                )
            data = response.read()
    except urllib.error.HTTPError as exc:
        raise FeedFetchError(
            f"unexpected HTTP status: {exc.code} {exc.reason} ({exc.code})"
        ) from exc
    except urllib.error.URLError as exc:
        raise FeedFetchError(f"error fetching {url}: {exc.reason}") from exc
    except (OSError, ValueError) as exc:
        raise FeedFetchError(f"error fetching {url}: {exc}") from exc
    return parse_feed(data)