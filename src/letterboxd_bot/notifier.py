"""Discord notification sink and message formatting."""

import logging

import discord

from letterboxd_bot.models import FeedItem, ItemType

logger = logging.getLogger(__name__)

VERBS = {
    ItemType.WATCH: "watched",
    ItemType.REWATCH: "rewatched",
    ItemType.REVIEW: "reviewed",
}


def format_rating(rating: float | None) -> str:
    """Render a 0.5-5 rating as stars, e.g. 3.5 -> '★★★½'."""
    if not rating or rating <= 0:
        return ""
    halves = int(round(rating * 2))
    return "★" * (halves // 2) + ("½" if halves % 2 else "")


def format_message(item: FeedItem) -> str:
    """One-line notification text for a feed item."""
    verb = VERBS.get(item.type, "watched")
    title = item.film_title or item.title
    if item.film_title and item.film_year:
        title = f"{item.film_title} ({item.film_year})"

    message = f"{item.author or 'Someone'} {verb} {title}"
    stars = format_rating(item.rating)
    if stars:
        message += f" {stars}"
    if item.link:
        message += f" {item.link}"
    return message


class DiscordNotifier:
    """Sends text to Discord channels through a connected client."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def send(self, channel_id: str, text: str) -> bool:
        """Post ``text`` to a channel. Failures are logged, not retried."""
        try:
            channel = self.client.get_channel(int(channel_id))
            if channel is None:
                channel = await self.client.fetch_channel(int(channel_id))
            await channel.send(text)
        except (ValueError, AttributeError, discord.DiscordException) as e:
            logger.warning("Could not send to channel %s: %s", channel_id, e)
            return False

        logger.info("Sent to channel %s: %s", channel_id, text)
        return True
