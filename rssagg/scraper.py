"""Background collection of posts from stored feeds."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable

from rssagg.database import DatabaseError, DuplicateKeyError, Feed, Queries
from rssagg.rss import RSSFeed, url_to_feed

__all__ = ["parse_pub_date", "scrape_feed", "scrape_once", "start_scraping"]

log = logging.getLogger(__name__)

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC1123Z = re.compile(
    r"[A-Z][a-z]{2}, \d{2} [A-Z][a-z]{2} \d{4} \d{2}:\d{2}:\d{2} [+-]\d{4}"
)

Fetcher = Callable[[str], RSSFeed]


def parse_pub_date(value: str) -> datetime:
    """Parse an RFC 1123 date with numeric zone, e.g. ``Mon, 02 Jan 2006 15:04:05 -0700``.

    Raises ``ValueError`` when the text does not have that form.
    """
    if not _RFC1123Z.fullmatch(value):
        raise ValueError(f"date {value!r} is not in RFC 1123 form with numeric zone")
    return datetime.strptime(value, "%a, %d %b %Y %H:%M:%S %z")


def scrape_feed(db: Queries, feed: Feed, fetch: Fetcher = url_to_feed) -> int:
    """Fetch one feed and store its items; return the number of new posts."""
    try:
        db.mark_feed_as_fetched(feed.id)
    except DatabaseError as exc:
        log.error("Error marking feed as fetched: %s", exc)

    try:
        rss_feed = fetch(feed.url)
    except Exception as exc:
        log.error("Error fetching feed: %s", exc)
        return 0

    created = 0
    for item in rss_feed.items:
        try:
            published_at = parse_pub_date(item.pub_date)
        except ValueError as exc:
            log.warning("couldn't parse date %s with err %s", item.pub_date, exc)
            published_at = ZERO_TIME

        now = datetime.now(timezone.utc)
        try:
            db.create_post(
                id=uuid.uuid4(),
                created_at=now,
                updated_at=now,
                title=item.title,
                description=item.description or None,
                published_at=published_at,
                url=item.link,
                feed_id=feed.id,
            )
        except DuplicateKeyError:
            continue
        except DatabaseError as exc:
            log.error("failed to create post: %s", exc)
            continue
        created += 1

    log.info("Feed %s collected, %d posts found", feed.name, len(rss_feed.items))
    return created


def scrape_once(db: Queries, concurrency: int, fetch: Fetcher = url_to_feed) -> int:
    """Scrape up to ``concurrency`` feeds in parallel; return how many were handled."""
    try:
        feeds = db.get_next_feeds_to_fetch(concurrency)
    except DatabaseError as exc:
        log.error("error fetching feeds: %s", exc)
        return 0
    if not feeds:
        return 0
    with ThreadPoolExecutor(max_workers=len(feeds)) as pool:
        list(pool.map(lambda feed: scrape_feed(db, feed, fetch), feeds))
    return len(feeds)


def start_scraping(
    db: Queries,
    concurrency: int,
    interval,
    stop: threading.Event | None = None,
    fetch: Fetcher = url_to_feed,
) -> None:
    """Scrape immediately, then once per ``interval`` until ``stop`` is set.

    ``interval`` is a ``timedelta`` or a number of seconds.
    """
    seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    stop = stop if stop is not None else threading.Event()
    log.info("scraping on %d threads every %s seconds", concurrency, seconds)
    while True:
        scrape_once(db, concurrency, fetch)
        if stop.wait(seconds):
            break