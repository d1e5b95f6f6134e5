"""Feed polling, diffing and the background scheduler loop."""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import datetime, timedelta
from typing import Protocol

from letterboxd_bot.database import StorePersistError
from letterboxd_bot.feed_parser import (
    DEFAULT_TIMEOUT,
    FeedFetchError,
    FeedParseError,
    LetterboxdProvider,
    parse_item,
)
from letterboxd_bot.models import FeedItem, UserRecord, utcnow
from letterboxd_bot.registry import NotFound, Registry

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 300  # 5 minutes
DEFAULT_STALE_AFTER = 600  # 10 minutes
DEFAULT_MAX_CONCURRENCY = 4


def select_new_items(
    items: Iterable[FeedItem],
    watermark: datetime,
    delivered_at_watermark: Iterable[str] = (),
) -> list[FeedItem]:
    """Deliverable items published at or after ``watermark``, oldest first.

    The boundary is inclusive so a same-second entry is never missed. Items
    stamped exactly at the watermark are skipped only if their guid is in
    ``delivered_at_watermark``.
    """
    seen = set(delivered_at_watermark)
    new_items = [
        item
        for item in items
        if item.deliverable
        and item.pub_date >= watermark
        and not (item.pub_date == watermark and item.identity in seen)
    ]
    new_items.sort(key=lambda item: item.pub_date)
    return new_items


class Poller:
    """Fetches a user's feed and returns the items not yet delivered.

    Polls of the same (guild, handle) never overlap. Each poll works on the
    stored record, not the caller's copy, and writes back only while the user
    is still tracked.
    """

    def __init__(
        self,
        registry: Registry,
        provider: LetterboxdProvider,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.provider = provider
        self.fetch_timeout = fetch_timeout
        self._clock = clock
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    @contextlib.asynccontextmanager
    async def _locked(self, user: UserRecord) -> AsyncIterator[None]:
        key = (user.guild_id, user.handle)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # forget the lock once no poll holds or waits on it
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    async def poll(self, user: UserRecord) -> list[FeedItem]:
        """Return new items for ``user`` in ascending publication order.

        ``user`` is refreshed from the store first and carries the saved
        watermark afterwards. Fetch and parse failures are logged and yield an
        empty list, as does a user removed before or during the poll.

        Raises:
            StorePersistError: If the advanced watermark cannot be saved. The
                record is left as it was so the items come back next tick.
        """
        async with self._locked(user):
            try:
                current = await asyncio.to_thread(self.registry.get, user.guild_id, user.handle)
            except NotFound:
                logger.info("User '%s' is no longer tracked, skipping", user.handle)
                return []
            user.updated_at = current.updated_at
            user.last_checked_at = current.last_checked_at
            user.boundary_guids = current.boundary_guids

            try:
                entries = await asyncio.wait_for(
                    asyncio.to_thread(self.provider.fetch_entries, user.handle),
                    timeout=self.fetch_timeout,
                )
                items = [parse_item(entry) for entry in entries]
            except (FeedFetchError, FeedParseError) as e:
                logger.warning("User '%s' feed error: %s", user.handle, e)
                await self._mark_checked(user)
                return []
            except asyncio.TimeoutError:
                logger.warning(
                    "User '%s' feed timed out after %ss", user.handle, self.fetch_timeout
                )
                await self._mark_checked(user)
                return []
            except Exception as e:
                logger.warning("User '%s' unexpected feed error: %s", user.handle, e)
                await self._mark_checked(user)
                return []

            new_items = select_new_items(items, user.updated_at, user.boundary_guids)

            previous = (user.updated_at, user.last_checked_at, user.boundary_guids)
            if new_items:
                _advance_watermark(user, new_items)
            user.last_checked_at = self._clock()
            try:
                still_tracked = await asyncio.to_thread(self.registry.update, user)
            except StorePersistError:
                user.updated_at, user.last_checked_at, user.boundary_guids = previous
                raise
            if not still_tracked:
                logger.info("User '%s' was removed during the poll, dropping items", user.handle)
                return []

            if new_items:
                logger.info("User '%s': %d new items", user.handle, len(new_items))
            return new_items

    async def _mark_checked(self, user: UserRecord) -> None:
        """Record a failed attempt so the user waits out the staleness window."""
        previous = user.last_checked_at
        user.last_checked_at = self._clock()
        try:
            await asyncio.to_thread(self.registry.update, user)
        except StorePersistError as e:
            user.last_checked_at = previous
            logger.error("User '%s': could not save check time: %s", user.handle, e)


def _advance_watermark(user: UserRecord, new_items: list[FeedItem]) -> None:
    """Move the watermark to the newest delivered item and remember its guids."""
    newest = new_items[-1].pub_date
    at_newest = [item.identity for item in new_items if item.pub_date == newest]
    if newest == user.updated_at:
        at_newest = user.boundary_guids + at_newest
    user.updated_at = newest
    user.boundary_guids = at_newest


class NotificationSink(Protocol):
    async def send(self, channel_id: str, text: str) -> bool: ...


class Scheduler:
    """Drives the Poller over every stale user of every guild on a fixed cadence."""

    def __init__(
        self,
        registry: Registry,
        poller: Poller,
        sink: NotificationSink,
        formatter: Callable[[FeedItem], str],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.registry = registry
        self.poller = poller
        self.sink = sink
        self.formatter = formatter
        self.poll_interval = poll_interval
        self.stale_after = timedelta(seconds=stale_after)
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def run_tick(self) -> int:
        """Poll every stale user once. Returns the number of items delivered."""
        guild_ids = await asyncio.to_thread(self.registry.guilds)
        results = await asyncio.gather(
            *(self._process_guild(guild_id) for guild_id in guild_ids)
        )
        return sum(results)

    async def _process_guild(self, guild_id: str) -> int:
        try:
            channel_id = await asyncio.to_thread(self.registry.get_channel, guild_id)
            if channel_id is None:
                logger.warning(
                    "Guild %s has no notification channel; set one with 'letterboxd channel'",
                    guild_id,
                )
                return 0
            users = await asyncio.to_thread(
                self.registry.stale_users, guild_id, self.stale_after
            )
        except Exception as e:
            logger.error("Guild %s: could not load users: %s", guild_id, e)
            return 0

        results = await asyncio.gather(
            *(self._process_user(user, channel_id) for user in users)
        )
        return sum(results)

    async def _process_user(self, user: UserRecord, channel_id: str) -> int:
        async with self._semaphore:
            try:
                items = await self.poller.poll(user)
            except StorePersistError as e:
                logger.error("User '%s': not delivering, watermark not saved: %s", user.handle, e)
                return 0
            except Exception as e:
                logger.error("User '%s': poll failed: %s", user.handle, e)
                return 0

            delivered = 0
            for item in items:
                try:
                    sent = await self.sink.send(channel_id, self.formatter(item))
                except Exception as e:
                    logger.warning("User '%s': could not deliver %s: %s", user.handle, item.link, e)
                    continue
                if sent:
                    delivered += 1
            return delivered

    async def run_forever(self) -> None:
        """Run ticks indefinitely, one every ``poll_interval`` seconds."""
        logger.info(
            "Poller started (interval: %ds, stale after: %ds)",
            self.poll_interval,
            self.stale_after.total_seconds(),
        )

        while True:
            started = time.monotonic()
            try:
                delivered = await self.run_tick()
                if delivered > 0:
                    logger.info("Poll cycle complete: %d items delivered", delivered)
            except Exception as e:
                logger.error("Poll cycle failed: %s", e)

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.poll_interval - elapsed))
