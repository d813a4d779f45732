import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from rssagg import database, scraper
from rssagg.rss import RSSFeed, RSSItem

UTC = timezone.utc
DATE = "Mon, 02 Jan 2006 15:04:05 -0700"


@pytest.fixture
def db():
    queries = database.connect()
    yield queries
    queries._conn.close()


def _user(db):
    now = datetime.now(UTC)
    return db.create_user(uuid.uuid4(), now, now, "alice")


def _feed(db, user, url):
    now = datetime.now(UTC)
    feed = db.create_feed(uuid.uuid4(), now, now, "feed", url, user.id)
    db.create_feed_follow(uuid.uuid4(), now, now, user.id, feed.id)
    return feed


def _fetch_items(*items):
    def fetch(url):
        return RSSFeed(title="t", items=list(items))

    return fetch


def test_parse_pub_date_layout_example():
    parsed = scraper.parse_pub_date(DATE)
    assert parsed == datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone(timedelta(hours=-7)))


@pytest.mark.parametrize(
    "value", ["", "2006-01-02T15:04:05Z", "Mon, 02 Jan 2006 15:04:05 MST", "Mon, 2 Jan 2006 15:04:05 -0700"]
)
def test_parse_pub_date_rejects(value):
    with pytest.raises(ValueError):
        scraper.parse_pub_date(value)


def test_scrape_feed_stores_posts_and_marks_fetched(db):
    user = _user(db)
    feed = _feed(db, user, "https://feeds.example.com/a.xml")
    fetch = _fetch_items(
        RSSItem(title="one", link="https://blog.example.com/1", description="d", pub_date=DATE),
        RSSItem(title="two", link="https://blog.example.com/2", description="", pub_date=DATE),
    )
    assert scraper.scrape_feed(db, feed, fetch) == 2
    posts = {p.title: p for p in db.get_posts_for_user(user.id, 10)}
    assert posts["one"].description == "d"
    assert posts["two"].description is None
    assert posts["one"].published_at == scraper.parse_pub_date(DATE)
    assert db.get_feeds()[0].last_fetched_at is not None


def test_scrape_feed_skips_duplicates(db):
    user = _user(db)
    feed = _feed(db, user, "https://feeds.example.com/a.xml")
    fetch = _fetch_items(RSSItem(title="one", link="https://blog.example.com/1", pub_date=DATE))
    assert scraper.scrape_feed(db, feed, fetch) == 1
    assert scraper.scrape_feed(db, feed, fetch) == 0
    assert len(db.get_posts_for_user(user.id, 10)) == 1


def test_unparseable_date_uses_zero_time(db):
    user = _user(db)
    feed = _feed(db, user, "https://feeds.example.com/a.xml")
    fetch = _fetch_items(RSSItem(title="x", link="https://blog.example.com/x", pub_date="bad"))
    scraper.scrape_feed(db, feed, fetch)
    (post,) = db.get_posts_for_user(user.id, 10)
    assert post.published_at == scraper.ZERO_TIME


def test_fetch_failure_still_marks_feed(db):
    user = _user(db)
    feed = _feed(db, user, "https://feeds.example.com/a.xml")

    def failing(url):
        raise OSError("unreachable")

    assert scraper.scrape_feed(db, feed, failing) == 0
    assert db.get_feeds()[0].last_fetched_at is not None
    assert db.get_posts_for_user(user.id, 10) == []


def test_scrape_once_respects_concurrency(db):
    user = _user(db)
    for n in range(3):
        _feed(db, user, f"https://feeds.example.com/{n}.xml")
    seen = []
    lock = threading.Lock()

    def fetch(url):
        with lock:
            seen.append(url)
        return RSSFeed()

    assert scraper.scrape_once(db, 2, fetch) == 2
    assert len(set(seen)) == 2
    fetched = [f for f in db.get_feeds() if f.last_fetched_at is not None]
    assert len(fetched) == 2


def test_scrape_once_with_no_feeds(db):
    assert scraper.scrape_once(db, 5, _fetch_items()) == 0


def test_start_scraping_stops_when_event_set(db):
    user = _user(db)
    _feed(db, user, "https://feeds.example.com/a.xml")
    calls = []

    def fetch(url):
        calls.append(url)
        return RSSFeed(
            title="t",
            items=[RSSItem(title="one", link="https://blog.example.com/1", pub_date=DATE)],
        )

    stop = threading.Event()
    stop.set()
    scraper.start_scraping(db, 10, timedelta(minutes=1), stop, fetch)
    assert calls == ["https://feeds.example.com/a.xml"]
    assert [p.title for p in db.get_posts_for_user(user.id, 10)] == ["one"]
    assert [f.last_fetched_at is None for f in db.get_feeds()] == [False]