"""Data models for the Letterboxd bot."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

PROFILE_URL_RE = re.compile(r"//(?:www\.)?letterboxd\.com/([a-z0-9_]+)", re.IGNORECASE)
HANDLE_RE = re.compile(r"([a-z0-9_]+)", re.IGNORECASE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_handle(raw: str | None) -> str | None:
    """Reduce a username or profile URL to a Letterboxd handle.

    ``https://letterboxd.com/Alice/films/`` and ``alice`` both give ``alice``.
    Returns None when nothing usable is left.
    """
    if not raw:
        return None

    match = PROFILE_URL_RE.search(raw)
    if match:
        return match.group(1).lower()

    match = HANDLE_RE.search(raw)
    if match:
        return match.group(1).lower()
    return None


@dataclass
class UserRecord:
    """A Letterboxd user tracked within one guild."""

    handle: str
    guild_id: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_checked_at: datetime | None = None
    # guids already delivered whose pub_date equals updated_at
    boundary_guids: list[str] = field(default_factory=list)
    loaded: bool = False

    @property
    def key(self) -> str:
        return user_key(self.guild_id, self.handle)

    @property
    def profile_url(self) -> str:
        return profile_url(self.handle)

    @property
    def rss_url(self) -> str:
        return rss_url(self.handle)

    def to_record(self) -> dict:
        """Serialize for the key-value store. ``loaded`` is not stored."""
        return {
            "handle": self.handle,
            "guild_id": self.guild_id,
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
            "last_checked_at": _dt_to_str(self.last_checked_at),
            "boundary_guids": list(self.boundary_guids),
        }

    @classmethod
    def from_record(cls, record: dict) -> "UserRecord":
        now = utcnow()
        return cls(
            handle=record["handle"],
            guild_id=record["guild_id"],
            created_at=_str_to_dt(record.get("created_at")) or now,
            updated_at=_str_to_dt(record.get("updated_at")) or now,
            last_checked_at=_str_to_dt(record.get("last_checked_at")),
            boundary_guids=list(record.get("boundary_guids") or []),
            loaded=True,
        )


class ItemType(Enum):
    REVIEW = "review"
    WATCH = "watch"
    REWATCH = "rewatch"
    UNKNOWN = "unknown"


DELIVERABLE_TYPES = frozenset({ItemType.REVIEW, ItemType.WATCH, ItemType.REWATCH})


@dataclass(frozen=True)
class FeedItem:
    """One classified entry from a user's activity feed."""

    type: ItemType
    title: str
    author: str
    link: str
    pub_date: datetime
    guid: str | None = None
    film_title: str | None = None
    film_year: int | None = None
    rating: float | None = None
    rewatch: bool = False
    watched_date: date | None = None

    @property
    def deliverable(self) -> bool:
        return self.type in DELIVERABLE_TYPES

    @property
    def identity(self) -> str:
        return self.guid or self.link


def user_key(guild_id: str, handle: str) -> str:
    return f"{guild_id}:{handle}"


def profile_url(handle: str) -> str:
    return f"https://letterboxd.com/{handle}/"


def rss_url(handle: str) -> str:
    return f"https://letterboxd.com/{handle}/rss/"


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to an aware UTC datetime."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
