"""Tests for the chat command handler."""

import asyncio

import pytest

from letterboxd_bot.commands import CommandHandler
from letterboxd_bot.feed_parser import FeedFetchError
from letterboxd_bot.registry import Registry

from conftest import FakeProvider


@pytest.fixture
def handler(registry):
    return CommandHandler(registry)


def run(handler, content, guild_id="1", channel_id="100"):
    return asyncio.run(handler.handle(guild_id, channel_id, content))


@pytest.mark.parametrize("content", ["hello there", "letterboxd", "", "letterboxdadd alice"])
def test_non_commands_are_ignored(handler, content):
    assert run(handler, content) is None


def test_help_lists_commands(handler):
    reply = run(handler, "Letterboxd HELP")

    assert reply.startswith("```")
    for command in ("list", "add {username}", "remove {username}", "channel"):
        assert f"letterboxd {command}" in reply


def test_add_tracks_user_and_claims_channel(handler, registry):
    reply = run(handler, "letterboxd add https://letterboxd.com/Alice/", channel_id="555")

    assert "Tracking alice" in reply
    assert [u.handle for u in registry.list_users("1")] == ["alice"]
    assert registry.get_channel("1") == "555"


def test_add_keeps_existing_channel(handler, registry):
    registry.set_channel("1", "100")

    run(handler, "letterboxd add alice", channel_id="555")

    assert registry.get_channel("1") == "100"


def test_add_without_argument_shows_usage(handler):
    assert run(handler, "letterboxd add").startswith("Usage:")


def test_add_invalid_handle(handler, registry):
    reply = run(handler, "letterboxd add !!!")

    assert "doesn't look like" in reply
    assert registry.list_users("1") == []


def test_add_unknown_user(db, clock):
    handler = CommandHandler(Registry(db, FakeProvider(existing=set()), clock=clock))

    assert run(handler, "letterboxd add ghost") == "Couldn't find `ghost` on Letterboxd."


def _unreachable(handle):
    raise FeedFetchError("down")


def test_add_when_letterboxd_is_unreachable(db, clock):
    provider = FakeProvider()
    provider.user_exists = _unreachable
    handler = CommandHandler(Registry(db, provider, clock=clock))

    assert "Couldn't reach Letterboxd" in run(handler, "letterboxd add alice")


def test_list_is_sorted(handler):
    run(handler, "letterboxd add carol")
    run(handler, "letterboxd add alice")
    run(handler, "letterboxd add bob")

    assert run(handler, "letterboxd list") == "```\nalice\nbob\ncarol\n```"


def test_list_when_empty(handler):
    assert "Nobody is tracked yet" in run(handler, "letterboxd list")


def test_list_is_per_guild(handler):
    run(handler, "letterboxd add alice", guild_id="1")

    assert "Nobody is tracked yet" in run(handler, "letterboxd list", guild_id="2")


def test_remove(handler, registry):
    run(handler, "letterboxd add alice")

    assert run(handler, "letterboxd remove alice") == "Stopped tracking `alice`."
    assert registry.list_users("1") == []


def test_remove_unknown(handler):
    assert run(handler, "letterboxd remove bob") == "`bob` isn't being tracked."


def test_channel_sets_notification_target(handler, registry):
    reply = run(handler, "letterboxd channel", channel_id="777")

    assert "<#777>" in reply
    assert registry.get_channel("1") == "777"


def test_unknown_command(handler):
    assert "Unknown command" in run(handler, "letterboxd frobnicate")


def test_custom_prefix(registry):
    handler = CommandHandler(registry, prefix="lb")

    assert run(handler, "letterboxd list") is None
    assert "Nobody is tracked yet" in run(handler, "lb list")
