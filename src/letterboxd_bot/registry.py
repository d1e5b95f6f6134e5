"""Per-guild registry of tracked Letterboxd users."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from letterboxd_bot.database import Database
from letterboxd_bot.feed_parser import LetterboxdProvider
from letterboxd_bot.models import UserRecord, normalize_handle, user_key, utcnow

logger = logging.getLogger(__name__)

USERS_NAMESPACE = "users"
CHANNELS_NAMESPACE = "channels"


class InvalidHandle(Exception):
    """Raised when input does not contain a usable username."""


class UnknownRemoteUser(Exception):
    """Raised when Letterboxd has no profile for a username."""


class NotFound(Exception):
    """Raised when a username is not tracked in a guild."""


class Registry:
    """CRUD over UserRecords, partitioned by guild.

    Every mutating call is written to the store before it returns.
    """

    def __init__(
        self,
        db: Database,
        provider: LetterboxdProvider,
        default_channel_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.provider = provider
        self.default_channel_id = default_channel_id
        self._clock = clock

    # --- User operations ---

    def get(self, guild_id: str, raw_handle: str) -> UserRecord:
        """Load a tracked user.

        Raises:
            NotFound: If the handle is not tracked (or does not normalize).
        """
        handle = normalize_handle(raw_handle)
        if handle is None:
            raise NotFound(raw_handle)
        record = self.db.get(USERS_NAMESPACE, user_key(guild_id, handle))
        if record is None:
            raise NotFound(handle)
        return UserRecord.from_record(record)

    def list_users(self, guild_id: str) -> list[UserRecord]:
        """Return every user tracked in a guild, in no particular order."""
        users = []
        for key in list(self.db.scan_keys(USERS_NAMESPACE, f"{guild_id}:")):
            record = self.db.get(USERS_NAMESPACE, key)
            if record is not None:
                users.append(UserRecord.from_record(record))
        return users

    def add(self, guild_id: str, raw_handle: str) -> UserRecord:
        """Start tracking a user. Re-adding returns the existing record untouched.

        Raises:
            InvalidHandle: If no username can be extracted.
            UnknownRemoteUser: If Letterboxd reports the profile missing.
            FeedFetchError: If Letterboxd cannot be reached to check.
        """
        handle = normalize_handle(raw_handle)
        if handle is None:
            raise InvalidHandle(raw_handle)

        existing = self.db.get(USERS_NAMESPACE, user_key(guild_id, handle))
        if existing is not None:
            return UserRecord.from_record(existing)

        if not self.provider.user_exists(handle):
            raise UnknownRemoteUser(handle)

        now = self._clock()
        user = UserRecord(handle=handle, guild_id=guild_id, created_at=now, updated_at=now)
        self.save(user)
        logger.info("Guild %s: now tracking %s", guild_id, handle)
        return user

    def remove(self, guild_id: str, raw_handle: str) -> bool:
        """Stop tracking a user. Returns True if a record was deleted."""
        handle = normalize_handle(raw_handle)
        if handle is None:
            return False
        deleted = self.db.delete(USERS_NAMESPACE, user_key(guild_id, handle))
        if deleted:
            logger.info("Guild %s: stopped tracking %s", guild_id, handle)
        return deleted

    def save(self, user: UserRecord) -> None:
        """Persist a user record.

        Raises:
            StorePersistError: If the write fails.
        """
        self.db.set(USERS_NAMESPACE, user.key, user.to_record())
        user.loaded = True

    def update(self, user: UserRecord) -> bool:
        """Persist a record only if it is still tracked.

        Returns False, writing nothing, if the user was removed meanwhile.

        Raises:
            StorePersistError: If the write fails.
        """
        if not self.db.replace(USERS_NAMESPACE, user.key, user.to_record()):
            return False
        user.loaded = True
        return True

    def clear(self, guild_id: str) -> int:
        """Stop tracking every user in a guild. Returns the number removed."""
        return self.db.clear(USERS_NAMESPACE, f"{guild_id}:")

    def stale_users(self, guild_id: str, threshold: timedelta) -> list[UserRecord]:
        """Users never checked, or last checked more than ``threshold`` ago."""
        now = self._clock()
        return [
            user
            for user in self.list_users(guild_id)
            if user.last_checked_at is None or now - user.last_checked_at > threshold
        ]

    def guilds(self) -> list[str]:
        """Guild ids with at least one tracked user."""
        guild_ids = {key.split(":", 1)[0] for key in self.db.scan_keys(USERS_NAMESPACE)}
        return sorted(guild_ids)

    # --- Guild settings ---

    def set_channel(self, guild_id: str, channel_id: str) -> None:
        """Send a guild's notifications to ``channel_id``."""
        self.db.set(CHANNELS_NAMESPACE, guild_id, {"channel_id": str(channel_id)})

    def get_channel(self, guild_id: str) -> str | None:
        """Notification channel for a guild, falling back to the default."""
        record = self.db.get(CHANNELS_NAMESPACE, guild_id)
        if record and record.get("channel_id"):
            return record["channel_id"]
        return self.default_channel_id
