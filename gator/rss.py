"""Fetching and parsing RSS feeds."""

from __future__ import annotations

import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

USER_AGENT = "gator"


class FeedFetchError(Exception):
    """A feed could not be downloaded or parsed."""


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    """The channel of an RSS document and its items."""

    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RSSItem] = field(default_factory=list)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _chardata(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _parse_item(element: ET.Element) -> RSSItem:
    item = RSSItem()
    for child in element:
        name = _local(child.tag)
        if name == "title":
            item.title = _chardata(child)
        elif name == "link":
            item.link = _chardata(child)
        elif name == "description":
            item.description = _chardata(child)
        elif name == "pubDate":
            item.pub_date = _chardata(child)
    return item


def parse_feed(data: bytes | str) -> RSSFeed:
    """Parse an RSS document; raise :class:`FeedFetchError` if it is not XML."""
    try:
        root = ET.fromstring(data)
    except (ET.ParseError, ValueError) as exc:
        raise FeedFetchError(f"Error unmarshalling response body: {exc}") from exc
    feed = RSSFeed()
    for channel in root:
        if _local(channel.tag) != "channel":
            continue
        for child in channel:
            name = _local(child.tag)
            if name == "title":
                feed.title = _chardata(child)
            elif name == "link":
                feed.link = _chardata(child)
            elif name == "description":
                feed.description = _chardata(child)
            elif name == "item":
                feed.items.append(_parse_item(child))
    return feed


def fetch_feed(feed_url: str, timeout: float = 10.0) -> RSSFeed:
    """Download and parse the feed at ``feed_url``."""
    try:
        request = urllib.request.Request(
            feed_url, headers={"User-Agent": USER_AGENT}, method="GET"
        )
    except ValueError as exc:
        raise FeedFetchError(f"Error creating request: {exc}") from exc
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            status = response.status
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise FeedFetchError(f"Request error: {exc.code}") from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise FeedFetchError(f"Error making request: {exc}") from exc
    if status != 200:
        raise FeedFetchError(f"Request error: {status}")
    return parse_feed(body)