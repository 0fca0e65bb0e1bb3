"""
Chat command handling for the Now-Playing Chat Bot.

Commands are matched on the first word of a chat message. The dispatcher
tries commands in registration order and returns the first response, subject
to per-command enable flags and cooldowns.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from cooldown_manager import CooldownManager
from models import ChatMessage
from now_playing import NowPlayingProvider


MAX_MESSAGE_LENGTH = 500
TRUNCATION_SUFFIX = "..."

NO_CURRENT_TRACK = "No track currently playing"
NO_LAST_TRACK = "No previous track available"


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut text to Twitch's message limit, ending truncated text with '...'."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


class BotCommand(ABC):
    """A chat command triggered by the first word of a message."""

    triggers: List[str] = []
    description: str = ""

    def __init__(self, enabled: bool = True, global_cooldown: float = 3.0, user_cooldown: float = 10.0):
        self.enabled = enabled
        self.global_cooldown = global_cooldown
        self.user_cooldown = user_cooldown

    def matches(self, text: str) -> Optional[str]:
        """
        Return the trigger the message starts with, if any.

        Only the first whitespace-delimited word is compared, ignoring case.
        """
        words = text.split(maxsplit=1)
        if not words:
            return None

        first_word = words[0].lower()
        for trigger in self.triggers:
            if first_word == trigger.lower():
                return trigger
        return None

    @abstractmethod
    def execute(self, text: str) -> Optional[str]:
        """Return the reply for a message, or None if the command does not match."""
        pass


class SongCommand(BotCommand):
    """Replies with the track that is playing right now."""

    triggers = ["!song", "!currentsong", "!nowplaying"]
    description = "Displays the currently playing track"

    def __init__(self, provider: NowPlayingProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider

    def execute(self, text: str) -> Optional[str]:
        if self.matches(text) is None:
            return None
        return truncate_message(self.provider.current_track_description() or NO_CURRENT_TRACK)


class LastSongCommand(BotCommand):
    """Replies with the track that played before the current one."""

    triggers = ["!last", "!lastsong", "!prevsong"]
    description = "Displays the previously played track"

    def __init__(self, provider: NowPlayingProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider

    def execute(self, text: str) -> Optional[str]:
        if self.matches(text) is None:
            return None
        return truncate_message(self.provider.last_track_description() or NO_LAST_TRACK)


class CommandDispatcher:
    """Routes chat messages to registered commands."""

    def __init__(self, cooldown_manager: Optional[CooldownManager] = None, enabled: bool = True):
        """
        Initialize the dispatcher.

        Args:
            cooldown_manager: Cooldown tracker; a fresh one is created if omitted
            enabled: Master switch for every command
        """
        self.commands: List[BotCommand] = []
        self.cooldowns = cooldown_manager or CooldownManager()
        self.enabled = enabled
        self.logger = logging.getLogger(__name__)

    def register(self, command: BotCommand) -> None:
        """Add a command. Earlier registrations win when triggers overlap."""
        self.commands.append(command)
        self.logger.debug(f"Registered command {type(command).__name__} ({', '.join(command.triggers)})")

    def process(self, raw_text: str, user_id: str = "", is_moderator: bool = False) -> Optional[str]:
        """
        Find the command for a message and run it.

        Args:
            raw_text: Chat message text
            user_id: ID of the sender, used for per-user cooldowns
            is_moderator: Moderators and broadcasters skip cooldowns

        Returns:
            The reply text, or None if nothing should be sent
        """
        if not self.enabled:
            return None

        text = raw_text.strip()
        if not text or len(text) > MAX_MESSAGE_LENGTH:
            return None

        for command in self.commands:
            if not command.enabled:
                continue

            trigger = command.matches(text)
            if trigger is None:
                continue

            canonical = command.triggers[0]
            if self.cooldowns.is_on_cooldown(
                canonical,
                user_id,
                is_moderator=is_moderator,
                global_cooldown=command.global_cooldown,
                user_cooldown=command.user_cooldown
            ):
                self.logger.debug(f"Ignoring {trigger} from {user_id or 'unknown user'}: on cooldown")
                return None

            response = command.execute(text)
            if response is not None:
                self.cooldowns.record_use(canonical, user_id)
                self.logger.info(f"Command {trigger} executed for {user_id or 'unknown user'}")
                return response

        return None

    def process_message(self, message: ChatMessage) -> Optional[str]:
        """Dispatch a received chat message."""
        return self.process(message.text, user_id=message.sender_user_id, is_moderator=message.is_moderator)

    def reset_cooldowns(self) -> None:
        self.cooldowns.reset()


def build_default_dispatcher(provider: NowPlayingProvider, commands_config: Dict[str, Any]) -> CommandDispatcher:
    """
    Create a dispatcher with the built-in song commands.

    Args:
        provider: Source of track descriptions
        commands_config: The ``commands`` configuration section

    Returns:
        A dispatcher with SongCommand and LastSongCommand registered
    """
    global_cooldown = commands_config.get('global_cooldown', 3.0)
    user_cooldown = commands_config.get('user_cooldown', 10.0)

    dispatcher = CommandDispatcher(enabled=commands_config.get('enabled', True))
    dispatcher.register(SongCommand(
        provider,
        enabled=commands_config.get('song', {}).get('enabled', True),
        global_cooldown=global_cooldown,
        user_cooldown=user_cooldown
    ))
    dispatcher.register(LastSongCommand(
        provider,
        enabled=commands_config.get('last_song', {}).get('enabled', True),
        global_cooldown=global_cooldown,
        user_cooldown=user_cooldown
    ))
    return dispatcher
