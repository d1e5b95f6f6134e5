"""Discord client wiring: commands in, notifications out."""

import asyncio
import logging

import discord
from discord import app_commands

from letterboxd_bot.commands import CommandHandler
from letterboxd_bot.config import BotConfig
from letterboxd_bot.notifier import DiscordNotifier, format_message
from letterboxd_bot.poller import Poller, Scheduler
from letterboxd_bot.registry import Registry

logger = logging.getLogger(__name__)


class LetterboxdBot(discord.Client):
    """Discord client that answers ``letterboxd`` commands and runs the poller."""

    def __init__(self, config: BotConfig, registry: Registry, poller: Poller):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents)

        self.command_handler = CommandHandler(registry, config.command_prefix)
        self.scheduler = Scheduler(
            registry,
            poller,
            DiscordNotifier(self),
            format_message,
            poll_interval=config.poll_interval_s,
            stale_after=config.stale_after_s,
            max_concurrency=config.max_concurrency,
        )
        self.tree = app_commands.CommandTree(self)
        self.tree.add_command(_build_command_group(self.command_handler))
        self._scheduler_task: asyncio.Task | None = None

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user)
        for guild in self.guilds:
            await self._sync_commands(guild)

        # on_ready fires again after reconnects
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self.scheduler.run_forever())

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("Joined a new guild: %s (%s)", guild.name, guild.id)
        await self._sync_commands(guild)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return

        reply = await self.command_handler.handle(
            str(message.guild.id), str(message.channel.id), message.content
        )
        if reply:
            await message.channel.send(reply)

    async def close(self) -> None:
        if self._scheduler_task is not None:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
            self._scheduler_task = None
        await super().close()

    async def _sync_commands(self, guild: discord.Guild) -> None:
        """Register the slash commands in one guild."""
        self.tree.copy_global_to(guild=guild)
        try:
            await self.tree.sync(guild=guild)
        except discord.HTTPException as e:
            logger.warning("Could not sync commands to guild %s: %s", guild.id, e)


def _build_command_group(handler: CommandHandler) -> app_commands.Group:
    """``/letterboxd`` slash commands backed by the same handler as text commands."""
    group = app_commands.Group(
        name="letterboxd",
        description="Post Letterboxd activity to this server",
        guild_only=True,
    )

    @group.command(name="add", description="Track a Letterboxd user")
    @app_commands.describe(username="Letterboxd username or profile URL")
    async def add(interaction: discord.Interaction, username: str) -> None:
        await interaction.response.defer()
        reply = await asyncio.to_thread(
            handler.add, str(interaction.guild_id), str(interaction.channel_id), username
        )
        await interaction.followup.send(reply)

    @group.command(name="remove", description="Stop tracking a Letterboxd user")
    @app_commands.describe(username="Letterboxd username or profile URL")
    async def remove(interaction: discord.Interaction, username: str) -> None:
        reply = await asyncio.to_thread(handler.remove, str(interaction.guild_id), username)
        await interaction.response.send_message(reply)

    @group.command(name="list", description="List tracked Letterboxd users")
    async def list_users(interaction: discord.Interaction) -> None:
        reply = await asyncio.to_thread(handler.list_users, str(interaction.guild_id))
        await interaction.response.send_message(reply)

    @group.command(name="channel", description="Post Letterboxd activity in this channel")
    async def channel(interaction: discord.Interaction) -> None:
        reply = await asyncio.to_thread(
            handler.set_channel, str(interaction.guild_id), str(interaction.channel_id)
        )
        await interaction.response.send_message(reply)

    @group.command(name="help", description="Show the available commands")
    async def help_(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(handler.help(), ephemeral=True)

    return group
