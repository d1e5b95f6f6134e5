"""Chat command handling for the Letterboxd bot."""

import asyncio
import logging

from letterboxd_bot.database import StorePersistError
from letterboxd_bot.feed_parser import FeedFetchError
from letterboxd_bot.models import profile_url
from letterboxd_bot.registry import InvalidHandle, Registry, UnknownRemoteUser

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "letterboxd"


def _code_block(lines: list[str]) -> str:
    return "```\n" + "\n".join(lines) + "\n```"


class CommandHandler:
    """Maps ``letterboxd <command> [args]`` messages onto Registry calls.

    Every method returns the reply text to post back to the channel.
    """

    def __init__(self, registry: Registry, prefix: str = DEFAULT_PREFIX):
        self.registry = registry
        self.prefix = prefix.lower()

    async def handle(self, guild_id: str, channel_id: str, content: str) -> str | None:
        """Dispatch a raw message. Returns None if it is not a command."""
        args = content.split()
        if len(args) < 2 or args[0].lower() != self.prefix:
            return None

        command = args[1].lower()
        argument = args[2] if len(args) > 2 else ""

        if command == "help":
            return self.help()
        if command == "list":
            return await asyncio.to_thread(self.list_users, guild_id)
        if command == "add":
            return await asyncio.to_thread(self.add, guild_id, channel_id, argument)
        if command == "remove":
            return await asyncio.to_thread(self.remove, guild_id, argument)
        if command == "channel":
            return await asyncio.to_thread(self.set_channel, guild_id, channel_id)
        return f"Unknown command `{command}`. Try `{self.prefix} help`."

    def help(self) -> str:
        return _code_block([
            f"{self.prefix} list",
            f"{self.prefix} add {{username}}",
            f"{self.prefix} remove {{username}}",
            f"{self.prefix} channel",
        ])

    def list_users(self, guild_id: str) -> str:
        handles = sorted(user.handle for user in self.registry.list_users(guild_id))
        if not handles:
            return f"Nobody is tracked yet. Add someone with `{self.prefix} add {{username}}`."
        return _code_block(handles)

    def add(self, guild_id: str, channel_id: str, raw_handle: str) -> str:
        if not raw_handle:
            return f"Usage: `{self.prefix} add {{username}}`"
        try:
            user = self.registry.add(guild_id, raw_handle)
            if self.registry.get_channel(guild_id) is None:
                self.registry.set_channel(guild_id, channel_id)
        except InvalidHandle:
            return f"`{raw_handle}` doesn't look like a Letterboxd username."
        except UnknownRemoteUser as e:
            return f"Couldn't find `{e}` on Letterboxd."
        except FeedFetchError as e:
            logger.warning("Guild %s: could not verify %s: %s", guild_id, raw_handle, e)
            return "Couldn't reach Letterboxd right now, try again later."
        except StorePersistError as e:
            logger.error("Guild %s: could not save %s: %s", guild_id, raw_handle, e)
            return "Something went wrong saving that user."
        return f"Tracking {user.handle} <{profile_url(user.handle)}>"

    def remove(self, guild_id: str, raw_handle: str) -> str:
        if not raw_handle:
            return f"Usage: `{self.prefix} remove {{username}}`"
        try:
            removed = self.registry.remove(guild_id, raw_handle)
        except StorePersistError as e:
            logger.error("Guild %s: could not remove %s: %s", guild_id, raw_handle, e)
            return "Something went wrong removing that user."
        if not removed:
            return f"`{raw_handle}` isn't being tracked."
        return f"Stopped tracking `{raw_handle}`."

    def set_channel(self, guild_id: str, channel_id: str) -> str:
        try:
            self.registry.set_channel(guild_id, channel_id)
        except StorePersistError as e:
            logger.error("Guild %s: could not set channel: %s", guild_id, e)
            return "Something went wrong saving the channel."
        return f"Letterboxd activity will be posted in <#{channel_id}>."
