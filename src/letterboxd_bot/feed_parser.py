"""Letterboxd RSS fetching and parsing using requests and feedparser."""

import calendar
import logging
from datetime import date, datetime, timezone
from time import struct_time

import feedparser
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from letterboxd_bot.models import FeedItem, ItemType, profile_url, rss_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
USER_AGENT = "letterboxd-discord-bot/1.0 (+https://letterboxd.com)"

# Retries on connection errors and transient server errors only
_RETRY_STRATEGY = Retry(
    total=2,
    backoff_factor=0.5,
    status_forcelist=[429, 502, 503, 504],
    allowed_methods=["GET", "HEAD"],
    raise_on_status=False,
)

NO_DATE = datetime.min.replace(tzinfo=timezone.utc)


class FeedFetchError(Exception):
    """Raised when a feed or profile cannot be retrieved."""


class FeedParseError(Exception):
    """Raised when a fetched document is not a usable feed."""


class LetterboxdProvider:
    """Reads public profiles and activity feeds from letterboxd.com.

    Holds one pooled ``requests.Session`` for the lifetime of the bot; call
    ``close()`` on shutdown.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: requests.Session | None = None):
        self.timeout = timeout
        self._session = session or _build_session()

    def close(self) -> None:
        self._session.close()

    def fetch_entries(self, handle: str) -> list[dict]:
        """Fetch the raw feedparser entries of a user's RSS feed.

        Raises:
            FeedFetchError: On network errors, timeouts or non-200 responses.
            FeedParseError: If the response is not an RSS/Atom feed.
        """
        url = rss_url(handle)
        try:
            rsp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FeedFetchError(f"Could not reach {url}: {e}") from e

        if rsp.status_code != 200:
            raise FeedFetchError(f"Could not reach {url}: HTTP {rsp.status_code}")

        parsed = feedparser.parse(rsp.content)
        if not parsed.feed.get("title") and not parsed.entries:
            raise FeedParseError(f"{url} does not point to a valid RSS feed")
        if parsed.bozo:
            logger.debug("Feed %s has formatting issues: %s", url, parsed.get("bozo_exception"))

        return list(parsed.entries)

    def user_exists(self, handle: str) -> bool:
        """Check that a profile page exists. Only a 404 counts as missing."""
        url = profile_url(handle)
        try:
            rsp = self._session.head(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise FeedFetchError(f"Could not reach {url}: {e}") from e
        return rsp.status_code != 404


def _build_session() -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=_RETRY_STRATEGY)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session


def classify_entry(entry: dict) -> ItemType:
    """Classify a raw entry by its guid: ``letterboxd-review-*`` or ``letterboxd-watch-*``.

    Lists, entries without a guid and anything else are UNKNOWN.
    """
    guid = str(entry.get("id") or entry.get("guid") or "").lower()
    if guid.startswith("letterboxd-review-"):
        return ItemType.REVIEW
    if guid.startswith("letterboxd-watch-"):
        if _parse_yes(entry.get("letterboxd_rewatch")):
            return ItemType.REWATCH
        return ItemType.WATCH
    return ItemType.UNKNOWN


def parse_item(entry: dict) -> FeedItem:
    """Build a FeedItem from a raw feed entry. Never raises.

    An entry without a usable publication date is classified UNKNOWN.
    """
    pub_date = _parse_date(entry)
    item_type = classify_entry(entry) if pub_date else ItemType.UNKNOWN

    return FeedItem(
        type=item_type,
        title=str(entry.get("title") or "Untitled"),
        author=str(entry.get("author") or entry.get("dc_creator") or ""),
        link=str(entry.get("link") or ""),
        pub_date=pub_date or NO_DATE,
        guid=entry.get("id") or entry.get("guid"),
        film_title=entry.get("letterboxd_filmtitle"),
        film_year=_parse_int(entry.get("letterboxd_filmyear")),
        rating=_parse_float(entry.get("letterboxd_memberrating")),
        rewatch=_parse_yes(entry.get("letterboxd_rewatch")),
        watched_date=_parse_day(entry.get("letterboxd_watcheddate")),
    )


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry as aware UTC."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, (struct_time, tuple)):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                continue
    return None


def _parse_yes(value) -> bool:
    return str(value or "").strip().lower() == "yes"


def _parse_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_day(value) -> date | None:
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        return None
