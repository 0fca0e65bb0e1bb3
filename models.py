"""
Core data models for the Now-Playing Chat Bot.

This module defines the primary data structures used throughout the application
for representing credentials, device-code sessions, chat messages, integration
states, and the typed events the controller emits to its observers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional


MODERATOR_BADGE_SETS = frozenset({'moderator', 'broadcaster'})


@dataclass
class Credential:
    """In-memory copy of the secrets kept in the credential store."""

    bot_display_name: str = ""
    bot_user_id: str = ""
    oauth_token: str = ""
    channel_id: str = ""

    @property
    def is_signed_in(self) -> bool:
        return bool(self.oauth_token)

    @property
    def is_ready_to_join(self) -> bool:
        return self.is_signed_in and bool(self.channel_id)


@dataclass(frozen=True)
class BotIdentity:
    """Identity of the authenticated bot account."""

    user_id: str
    login: str
    display_name: str = ""

    @property
    def resolved_name(self) -> str:
        """Display name, falling back to the login when Twitch returns none."""
        return self.display_name or self.login


@dataclass(frozen=True)
class DeviceCodeSession:
    """Response of the device-code endpoint; lives for a single authorization."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int
    verification_uri_complete: Optional[str] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> 'DeviceCodeSession':
        """Build a session from the device endpoint JSON.

        Raises:
            ValueError: If any of the required fields is missing or mistyped
        """
        try:
            device_code = data['device_code']
            user_code = data['user_code']
            verification_uri = data['verification_uri']
            expires_in = data['expires_in']
            interval = data['interval']
        except (KeyError, TypeError) as e:
            raise ValueError(f"Missing device code field: {e}")

        if not all(isinstance(v, str) and v for v in (device_code, user_code, verification_uri)):
            raise ValueError("Device code fields must be non-empty strings")

        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (expires_in, interval)):
            raise ValueError("expires_in and interval must be integers")

        complete = data.get('verification_uri_complete')
        return cls(
            device_code=device_code,
            user_code=user_code,
            verification_uri=verification_uri,
            expires_in=expires_in,
            interval=interval,
            verification_uri_complete=complete if isinstance(complete, str) else None
        )


@dataclass(frozen=True)
class Badge:
    """A chat badge (e.g. subscriber, moderator)."""

    set_id: str
    id: str
    info: str = ""


@dataclass(frozen=True)
class ReplyContext:
    """Information about the message a chat message replies to."""

    parent_message_id: str
    parent_message_body: str = ""
    parent_user_id: str = ""
    parent_user_login: str = ""


@dataclass(frozen=True)
class ChatMessage:
    """A chat message received from the EventSub stream."""

    message_id: str
    channel_id: str
    sender_user_id: str
    sender_login: str
    text: str
    badges: List[Badge] = field(default_factory=list)
    reply_context: Optional[ReplyContext] = None

    @property
    def is_moderator(self) -> bool:
        """True for moderators and the broadcaster."""
        return any(badge.set_id in MODERATOR_BADGE_SETS for badge in self.badges)

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> 'ChatMessage':
        """Create a ChatMessage from a ``channel.chat.message`` event payload.

        Args:
            event: The ``payload.event`` object of a notification frame

        Returns:
            The parsed chat message

        Raises:
            ValueError: If the event lacks a message id or message text
        """
        if not isinstance(event, dict):
            raise ValueError("Event payload must be an object")

        message_id = event.get('message_id')
        message = event.get('message')
        text = message.get('text') if isinstance(message, dict) else None

        if not isinstance(message_id, str) or not message_id:
            raise ValueError("Event is missing message_id")
        if not isinstance(text, str):
            raise ValueError("Event is missing message.text")

        badges = []
        for badge in event.get('badges') or []:
            if isinstance(badge, dict) and isinstance(badge.get('set_id'), str) and isinstance(badge.get('id'), str):
                badges.append(Badge(set_id=badge['set_id'], id=badge['id'], info=badge.get('info') or ""))

        reply_context = None
        reply = event.get('reply')
        if isinstance(reply, dict):
            reply_context = ReplyContext(
                parent_message_id=reply.get('parent_message_id') or "",
                parent_message_body=reply.get('parent_message_body') or "",
                parent_user_id=reply.get('parent_user_id') or "",
                parent_user_login=reply.get('parent_user_login') or reply.get('parent_user_name') or ""
            )

        return cls(
            message_id=message_id,
            channel_id=event.get('broadcaster_user_id') or "",
            sender_user_id=event.get('chatter_user_id') or "",
            sender_login=event.get('chatter_user_login') or event.get('chatter_user_name') or "",
            text=text,
            badges=badges,
            reply_context=reply_context
        )


class ConnectionState(Enum):
    """Represents the chat connection state of the controller."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection state plus the failure reason for ``ERROR``."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    reason: str = ""

    @classmethod
    def error(cls, reason: str) -> 'ConnectionStatus':
        return cls(ConnectionState.ERROR, reason)


class AuthPhase(Enum):
    """Phases of the device authorization flow."""
    IDLE = "idle"
    REQUESTING_CODE = "requesting_code"
    WAITING_FOR_AUTH = "waiting_for_auth"
    RESOLVING_IDENTITY = "resolving_identity"
    ERROR = "error"


@dataclass(frozen=True)
class AuthState:
    """Authorization state with the data attached to its phase."""

    phase: AuthPhase = AuthPhase.IDLE
    user_code: str = ""
    verification_uri: str = ""
    reason: str = ""
    verification_uri_complete: str = ""

    @classmethod
    def idle(cls) -> 'AuthState':
        return cls(AuthPhase.IDLE)

    @classmethod
    def requesting_code(cls) -> 'AuthState':
        return cls(AuthPhase.REQUESTING_CODE)

    @classmethod
    def waiting_for_auth(cls, user_code: str, verification_uri: str, verification_uri_complete: str = "") -> 'AuthState':
        return cls(
            AuthPhase.WAITING_FOR_AUTH,
            user_code=user_code,
            verification_uri=verification_uri,
            verification_uri_complete=verification_uri_complete
        )

    @classmethod
    def resolving_identity(cls) -> 'AuthState':
        return cls(AuthPhase.RESOLVING_IDENTITY)

    @classmethod
    def error(cls, reason: str) -> 'AuthState':
        return cls(AuthPhase.ERROR, reason=reason)

    @property
    def is_in_progress(self) -> bool:
        return self.phase in (
            AuthPhase.REQUESTING_CODE,
            AuthPhase.WAITING_FOR_AUTH,
            AuthPhase.RESOLVING_IDENTITY
        )


class IntegrationState(Enum):
    """Single summary state for consumers that render the integration."""
    NOT_CONNECTED = "not_connected"
    AUTHORIZING = "authorizing"
    CONNECTED = "connected"
    ERROR = "error"


# Controller events

@dataclass(frozen=True)
class AuthStateChanged:
    state: AuthState


@dataclass(frozen=True)
class ConnectionStateChanged:
    status: ConnectionStatus


@dataclass(frozen=True)
class StatusMessageChanged:
    message: str


@dataclass(frozen=True)
class ReauthNeededChanged:
    reauth_needed: bool


@dataclass(frozen=True)
class ChatMessageReceived:
    message: ChatMessage
