"""Shared test fixtures for Letterboxd bot tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from letterboxd_bot.database import Database
from letterboxd_bot.registry import Registry


T0 = datetime(2026, 2, 13, 10, 0, 0, tzinfo=timezone.utc)


SAMPLE_LETTERBOXD_XML = """<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:letterboxd="https://letterboxd.com" xmlns:tmdb="https://themoviedb.org" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Letterboxd - Alice</title>
    <link>https://letterboxd.com/alice/</link>
    <description>Letterboxd - Alice</description>
    <item>
      <title>Dune: Part Two, 2024 - ★★★★½</title>
      <link>https://letterboxd.com/alice/film/dune-part-two/</link>
      <guid isPermaLink="false">letterboxd-review-100</guid>
      <pubDate>Fri, 13 Feb 2026 11:00:00 +0000</pubDate>
      <letterboxd:watchedDate>2026-02-12</letterboxd:watchedDate>
      <letterboxd:rewatch>No</letterboxd:rewatch>
      <letterboxd:filmTitle>Dune: Part Two</letterboxd:filmTitle>
      <letterboxd:filmYear>2024</letterboxd:filmYear>
      <letterboxd:memberRating>4.5</letterboxd:memberRating>
      <description><![CDATA[<p>Spice.</p>]]></description>
      <dc:creator>Alice</dc:creator>
    </item>
    <item>
      <title>Heat, 1995</title>
      <link>https://letterboxd.com/alice/film/heat-1995/</link>
      <guid isPermaLink="false">letterboxd-watch-101</guid>
      <pubDate>Fri, 13 Feb 2026 09:00:00 +0000</pubDate>
      <letterboxd:watchedDate>2026-02-12</letterboxd:watchedDate>
      <letterboxd:rewatch>Yes</letterboxd:rewatch>
      <letterboxd:filmTitle>Heat</letterboxd:filmTitle>
      <letterboxd:filmYear>1995</letterboxd:filmYear>
      <dc:creator>Alice</dc:creator>
    </item>
    <item>
      <title>Favourite heists</title>
      <link>https://letterboxd.com/alice/list/favourite-heists/</link>
      <guid isPermaLink="false">letterboxd-list-102</guid>
      <pubDate>Fri, 13 Feb 2026 12:00:00 +0000</pubDate>
      <dc:creator>Alice</dc:creator>
    </item>
  </channel>
</rss>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


def make_entry(
    kind: str = "watch",
    pub_date: datetime = T0,
    title: str = "Heat, 1995",
    number: int = 1,
    **extra,
) -> dict:
    """Build a raw entry shaped like feedparser's output for a Letterboxd item."""
    entry = {
        "id": f"letterboxd-{kind}-{number}",
        "title": title,
        "author": "Alice",
        "link": f"https://letterboxd.com/alice/film/{number}/",
        "published_parsed": pub_date.utctimetuple(),
    }
    entry.update(extra)
    return entry


class FakeProvider:
    """Stands in for LetterboxdProvider with canned responses."""

    def __init__(self, entries=None, existing=None, error=None):
        self.entries = entries or []
        self.existing = existing
        self.error = error
        self.fetch_calls: list[str] = []
        self.exists_calls: list[str] = []

    def fetch_entries(self, handle: str) -> list[dict]:
        self.fetch_calls.append(handle)
        if self.error is not None:
            raise self.error
        return list(self.entries)

    def user_exists(self, handle: str) -> bool:
        self.exists_calls.append(handle)
        if self.existing is None:
            return True
        return handle in self.existing

    def close(self) -> None:
        pass


class FakeClock:
    """Controllable clock for registry and poller tests."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    """Notification sink that keeps what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, channel_id: str, text: str) -> bool:
        if self.fail:
            return False
        self.sent.append((channel_id, text))
        return True


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected Database on a temporary file."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def registry(db, provider, clock):
    return Registry(db, provider, clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def sample_letterboxd_xml():
    """Sample Letterboxd RSS feed with a review, a rewatch and a list."""
    return SAMPLE_LETTERBOXD_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML


@pytest.fixture
def mock_response():
    """Factory for mocked requests responses."""

    def _make(status_code: int = 200, content: str = ""):
        rsp = MagicMock()
        rsp.status_code = status_code
        rsp.content = content.encode("utf-8")
        return rsp

    return _make
