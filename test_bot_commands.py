#!/usr/bin/env python3
"""
Unit tests for chat commands and the command dispatcher.
"""

import pytest

from bot_commands import (
    BotCommand, SongCommand, LastSongCommand, CommandDispatcher,
    build_default_dispatcher, truncate_message, NO_CURRENT_TRACK, NO_LAST_TRACK
)
from cooldown_manager import CooldownManager
from models import Badge, ChatMessage
from now_playing import StaticNowPlayingProvider


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class EchoCommand(BotCommand):
    triggers = ["!song"]

    def execute(self, text):
        return "echo" if self.matches(text) else None


@pytest.fixture
def provider():
    return StaticNowPlayingProvider(current="Daft Punk - Around The World", last="Justice - D.A.N.C.E.")


class TestSongCommand:
    """Test the current track command."""

    @pytest.mark.parametrize("text", ["!song", "!currentsong", "!nowplaying", "!SONG", "!NowPlaying"])
    def test_triggers(self, provider, text):
        assert SongCommand(provider).execute(text) == "Daft Punk - Around The World"

    def test_argument_text_is_ignored(self, provider):
        assert SongCommand(provider).execute("!song extra stuff") == "Daft Punk - Around The World"

    def test_non_matching_message(self, provider):
        command = SongCommand(provider)
        assert command.execute("hello world") is None
        assert command.execute("!songs") is None
        assert command.execute("") is None

    def test_trigger_must_be_first_word(self, provider):
        assert SongCommand(provider).execute("what is the !song") is None

    def test_no_track_fallback(self):
        assert SongCommand(StaticNowPlayingProvider()).execute("!song") == NO_CURRENT_TRACK

    def test_long_response_truncated(self):
        command = SongCommand(StaticNowPlayingProvider(current="a" * 600))

        result = command.execute("!song")

        assert len(result) == 500
        assert result.endswith("...")

    def test_exactly_500_chars_not_truncated(self):
        command = SongCommand(StaticNowPlayingProvider(current="a" * 500))

        result = command.execute("!song")

        assert result == "a" * 500

    def test_matches_returns_trigger(self, provider):
        assert SongCommand(provider).matches("!CurrentSong now") == "!currentsong"


class TestLastSongCommand:
    """Test the previous track command."""

    @pytest.mark.parametrize("text", ["!last", "!lastsong", "!prevsong", "!LAST"])
    def test_triggers(self, provider, text):
        assert LastSongCommand(provider).execute(text) == "Justice - D.A.N.C.E."

    def test_no_previous_track_fallback(self):
        assert LastSongCommand(StaticNowPlayingProvider(current="x")).execute("!last") == NO_LAST_TRACK

    def test_does_not_answer_song(self, provider):
        assert LastSongCommand(provider).execute("!song") is None


class TestTruncateMessage:

    def test_short_text_unchanged(self):
        assert truncate_message("short") == "short"

    def test_custom_length(self):
        assert truncate_message("abcdefghij", max_length=6) == "abc..."


class TestCommandDispatcher:
    """Test command routing."""

    def test_routes_case_insensitive_trigger_once(self, provider):
        """Test that '!SONG please' yields the now-playing text exactly once."""
        dispatcher = CommandDispatcher()
        dispatcher.register(SongCommand(provider))
        dispatcher.register(LastSongCommand(provider))

        assert dispatcher.process("!SONG please") == "Daft Punk - Around The World"

    def test_trims_input(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("   !song   ") == "Daft Punk - Around The World"

    def test_empty_and_oversized_input(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("") is None
        assert dispatcher.process("    ") is None
        assert dispatcher.process("!song " + "x" * 500) is None

    def test_exactly_500_chars_processed(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(SongCommand(provider))
        text = "!song " + "x" * 494

        assert len(text) == 500
        assert dispatcher.process(text) is not None

    def test_first_registered_command_wins(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(EchoCommand())
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("!song") == "echo"

    def test_disabled_command_skipped(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(EchoCommand(enabled=False))
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("!song") == "Daft Punk - Around The World"

    def test_dispatcher_disabled(self, provider):
        dispatcher = CommandDispatcher(enabled=False)
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("!song") is None

    def test_unknown_command(self, provider):
        dispatcher = CommandDispatcher()
        dispatcher.register(SongCommand(provider))

        assert dispatcher.process("!dance") is None


class TestDispatcherCooldowns:
    """Test cooldown enforcement in the dispatcher."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def dispatcher(self, provider, clock):
        dispatcher = CommandDispatcher(cooldown_manager=CooldownManager(clock=clock))
        dispatcher.register(SongCommand(provider, global_cooldown=3.0, user_cooldown=10.0))
        dispatcher.register(LastSongCommand(provider, global_cooldown=3.0, user_cooldown=10.0))
        return dispatcher

    def test_global_cooldown(self, dispatcher, clock):
        assert dispatcher.process("!song", user_id="u1") is not None
        assert dispatcher.process("!song", user_id="u2") is None

        clock.now += 3.0
        assert dispatcher.process("!song", user_id="u2") is not None

    def test_aliases_share_cooldown(self, dispatcher, clock):
        assert dispatcher.process("!song", user_id="u1") is not None
        assert dispatcher.process("!nowplaying", user_id="u2") is None

    def test_commands_have_separate_cooldowns(self, dispatcher):
        assert dispatcher.process("!song", user_id="u1") is not None
        assert dispatcher.process("!last", user_id="u2") is not None

    def test_user_cooldown(self, dispatcher, clock):
        assert dispatcher.process("!song", user_id="u1") is not None

        clock.now += 5.0
        assert dispatcher.process("!song", user_id="u1") is None
        assert dispatcher.process("!song", user_id="u2") is not None

        clock.now += 5.0
        assert dispatcher.process("!song", user_id="u1") is not None

    def test_moderator_bypasses_cooldown(self, dispatcher):
        assert dispatcher.process("!song", user_id="u1") is not None
        assert dispatcher.process("!song", user_id="mod", is_moderator=True) is not None
        assert dispatcher.process("!song", user_id="mod", is_moderator=True) is not None

    def test_reset_cooldowns(self, dispatcher):
        assert dispatcher.process("!song", user_id="u1") is not None
        dispatcher.reset_cooldowns()
        assert dispatcher.process("!song", user_id="u1") is not None

    def test_process_message_uses_badges(self, dispatcher):
        first = ChatMessage(message_id="m1", channel_id="B1", sender_user_id="u1", sender_login="viewer", text="!song")
        moderator = ChatMessage(
            message_id="m2",
            channel_id="B1",
            sender_user_id="u2",
            sender_login="mod",
            text="!song",
            badges=[Badge(set_id="moderator", id="1")]
        )

        assert dispatcher.process_message(first) is not None
        assert dispatcher.process_message(moderator) is not None


class TestBuildDefaultDispatcher:
    """Test building the dispatcher from configuration."""

    def test_registers_both_commands(self, provider):
        dispatcher = build_default_dispatcher(provider, {
            'enabled': True,
            'song': {'enabled': True},
            'last_song': {'enabled': True},
            'global_cooldown': 1.0,
            'user_cooldown': 2.0
        })

        assert [type(c) for c in dispatcher.commands] == [SongCommand, LastSongCommand]
        assert dispatcher.commands[0].global_cooldown == 1.0
        assert dispatcher.commands[1].user_cooldown == 2.0

    def test_per_command_enable_flags(self, provider):
        dispatcher = build_default_dispatcher(provider, {
            'enabled': True,
            'song': {'enabled': False},
            'last_song': {'enabled': True}
        })

        assert dispatcher.process("!song") is None
        assert dispatcher.process("!last") == "Justice - D.A.N.C.E."

    def test_master_switch(self, provider):
        dispatcher = build_default_dispatcher(provider, {'enabled': False})

        assert dispatcher.process("!song") is None
