"""
EventSub WebSocket chat session.

A ChatSession owns one WebSocket connection to Twitch EventSub, subscribes it
to ``channel.chat.message`` for one channel, and runs a read loop that turns
notifications into ChatMessage objects, hands them to observers and the
command dispatcher, and sends command replies back through the Helix API.

The session reports its state to a single callback and never reconnects on
failure by itself; retry policy belongs to the controller.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from bot_commands import CommandDispatcher
from models import ChatMessage
from platform_api import (
    CHAT_MESSAGE_SUBSCRIPTION,
    AuthenticationFailedError,
    PlatformAPI,
    PlatformAPIError,
    PlatformHTTPError,
)


DEFAULT_EVENTSUB_URL = "wss://eventsub.wss.twitch.tv/ws"
DEFAULT_KEEPALIVE_TIMEOUT = 10
KEEPALIVE_GRACE_SECONDS = 5
CLOSE_GOING_AWAY = 1001


class SessionState(Enum):
    """Lifecycle states of a chat session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    CLOSED = "closed"
    FAILED = "failed"


class ChatSessionError(Exception):
    """Base exception for chat session errors."""
    pass


class AlreadyConnectedError(ChatSessionError):
    """Raised when opening a session that is already connecting or active."""

    def __init__(self, message: str = "Already connected to a channel"):
        super().__init__(message)


class InvalidCredentialsError(ChatSessionError):
    """Raised when a session is opened without ids or token."""
    pass


class SessionNetworkError(ChatSessionError):
    """Raised when the WebSocket cannot be opened or stops delivering frames."""
    pass


class SubscriptionError(ChatSessionError):
    """Raised when the chat subscription is refused or revoked."""
    pass


class SessionAuthenticationError(ChatSessionError):
    """Raised when Twitch rejects the token during or after subscribing."""
    pass


class ChatSession:
    """A single EventSub WebSocket connection subscribed to one channel's chat."""

    def __init__(
        self,
        platform_api: PlatformAPI,
        dispatcher: Optional[CommandDispatcher] = None,
        eventsub_url: str = DEFAULT_EVENTSUB_URL,
        welcome_timeout: float = 10.0,
        on_state_change: Optional[Callable[['ChatSession', SessionState], None]] = None,
        debug_logging: bool = False
    ):
        """
        Initialize a chat session.

        Args:
            platform_api: Helix client used to subscribe and send replies
            dispatcher: Command dispatcher for incoming messages
            eventsub_url: EventSub WebSocket URL
            welcome_timeout: Seconds to wait for the session_welcome frame
            on_state_change: Called with (session, state) on every transition
            debug_logging: Log every raw frame at DEBUG level
        """
        self.platform_api = platform_api
        self.dispatcher = dispatcher
        self.eventsub_url = eventsub_url
        self.welcome_timeout = welcome_timeout
        self.on_state_change = on_state_change
        self.debug_logging = debug_logging

        self.state = SessionState.IDLE
        self.failure: Optional[ChatSessionError] = None
        self.session_id: Optional[str] = None
        self.keepalive_timeout: float = DEFAULT_KEEPALIVE_TIMEOUT

        self.broadcaster_id = ""
        self.bot_id = ""
        self._token = ""
        self._client_id = ""

        self._websocket = None
        self._read_task: Optional[asyncio.Task] = None
        self._message_observers: List[Callable[[ChatMessage], None]] = []

        self.logger = logging.getLogger(__name__)

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.CONNECTING, SessionState.SUBSCRIBING, SessionState.ACTIVE)

    def add_message_observer(self, callback: Callable[[ChatMessage], None]) -> None:
        self._message_observers.append(callback)

    async def open(self, broadcaster_id: str, bot_id: str, token: str, client_id: str) -> None:
        """
        Connect, wait for the welcome frame, subscribe, and start reading.

        Args:
            broadcaster_id: User ID of the channel to join
            bot_id: User ID of the bot account
            token: Bot access token
            client_id: Twitch application client ID

        Raises:
            AlreadyConnectedError: If the session is already connecting or active
            InvalidCredentialsError: If an id or the token is empty
            SessionNetworkError: If the WebSocket cannot be opened or welcomed
            SubscriptionError: If Twitch refuses the subscription
            SessionAuthenticationError: If Twitch rejects the token
        """
        if self.is_open:
            raise AlreadyConnectedError()

        if not broadcaster_id or not bot_id or not token or not client_id:
            raise InvalidCredentialsError("Broadcaster ID, bot ID, token, and client ID are required")

        self.broadcaster_id = broadcaster_id
        self.bot_id = bot_id
        self._token = token
        self._client_id = client_id
        self.failure = None
        self._set_state(SessionState.CONNECTING)

        self.logger.info(f"Connecting to EventSub at {self.eventsub_url}")
        try:
            websocket = await websockets.connect(self.eventsub_url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            error = SessionNetworkError(f"Failed to connect to Twitch EventSub: {e}")
            await self._fail(error)
            raise error

        self._websocket = websocket
        await self._ensure_opening()

        try:
            self.session_id, self.keepalive_timeout = await self._await_welcome(self._websocket)
        except ChatSessionError as e:
            await self._fail(e)
            raise

        await self._ensure_opening()
        self.logger.info(f"EventSub session {self.session_id} established (keepalive {self.keepalive_timeout}s)")
        self._set_state(SessionState.SUBSCRIBING)

        try:
            await self.platform_api.create_event_stream_subscription(
                self.session_id, broadcaster_id, bot_id, token, client_id
            )
        except AuthenticationFailedError:
            error = SessionAuthenticationError("Twitch rejected the access token")
            await self._fail(error)
            raise error
        except PlatformHTTPError as e:
            error = SubscriptionError(f"Chat subscription failed with HTTP {e.status_code}")
            await self._fail(error)
            raise error
        except PlatformAPIError as e:
            error = SessionNetworkError(f"Chat subscription failed: {e}")
            await self._fail(error)
            raise error

        await self._ensure_opening()
        self._set_state(SessionState.ACTIVE)
        self._read_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """
        Stop reading and close the WebSocket with code 1001.

        Safe to call more than once and from inside the read loop.
        """
        if self.state == SessionState.IDLE:
            return

        task = self._read_task
        self._read_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_socket()
        self.session_id = None

        if self.state != SessionState.CLOSED:
            self.logger.info("Chat session closed")
            self._set_state(SessionState.CLOSED)

    async def send_message(self, text: str, reply_to: Optional[str] = None) -> bool:
        """
        Send a chat message to the joined channel.

        Args:
            text: Message text
            reply_to: Optional ID of the message to reply to

        Returns:
            True if Twitch accepted the message

        Raises:
            ChatSessionError: If the session is not active
            SessionAuthenticationError: If Twitch rejects the token
        """
        if self.state != SessionState.ACTIVE:
            raise ChatSessionError("Chat session is not active")
        return await self._send(text, reply_to)

    async def _send(self, text: str, reply_to: Optional[str]) -> bool:
        try:
            return await self.platform_api.send_chat_message(
                self.broadcaster_id,
                self.bot_id,
                text,
                self._token,
                self._client_id,
                reply_to_message_id=reply_to
            )
        except AuthenticationFailedError:
            raise SessionAuthenticationError("Twitch rejected the access token while sending a message")
        except PlatformAPIError as e:
            self.logger.error(f"Failed to send chat message: {e}")
            return False

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        if self.on_state_change:
            try:
                self.on_state_change(self, state)
            except Exception as e:
                self.logger.error(f"Error in session state callback: {e}")

    async def _ensure_opening(self) -> None:
        """Abort an open() that was overtaken by close(), dropping its socket."""
        if self.state == SessionState.CLOSED:
            await self._close_socket()
            raise SessionNetworkError("Chat session was closed while connecting")

    async def _fail(self, error: ChatSessionError) -> None:
        """Move to FAILED and drop the socket."""
        await self._close_socket()
        if self.state != SessionState.CLOSED:
            self.logger.error(f"Chat session failed: {error}")
            self.failure = error
            self._set_state(SessionState.FAILED)

    async def _close_socket(self) -> None:
        websocket, self._websocket = self._websocket, None
        await self._close_websocket(websocket)

    async def _close_websocket(self, websocket) -> None:
        if websocket is None:
            return
        try:
            await websocket.close(code=CLOSE_GOING_AWAY, reason="going away")
        except (OSError, WebSocketException) as e:
            self.logger.debug(f"Error while closing WebSocket: {e}")

    def _decode_frame(self, raw: Any) -> Optional[Dict[str, Any]]:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Dropping malformed EventSub frame: {e}")
            return None
        if not isinstance(frame, dict) or not isinstance(frame.get('metadata'), dict):
            self.logger.warning("Dropping EventSub frame without metadata")
            return None
        return frame

    async def _await_welcome(self, websocket) -> Tuple[str, float]:
        """Read the session_welcome frame and return (session id, keepalive timeout)."""
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=self.welcome_timeout)
        except asyncio.TimeoutError:
            raise SessionNetworkError(f"No session_welcome received within {self.welcome_timeout}s")
        except (OSError, WebSocketException) as e:
            raise SessionNetworkError(f"Connection lost before session_welcome: {e}")

        if self.debug_logging:
            self.logger.debug(f"EventSub frame: {raw}")

        frame = self._decode_frame(raw)
        if frame is None or frame['metadata'].get('message_type') != 'session_welcome':
            raise SessionNetworkError("Expected session_welcome as the first frame")

        session = (frame.get('payload') or {}).get('session') or {}
        session_id = session.get('id')
        if not isinstance(session_id, str) or not session_id:
            raise SessionNetworkError("session_welcome frame has no session id")

        keepalive = session.get('keepalive_timeout_seconds')
        if isinstance(keepalive, bool) or not isinstance(keepalive, (int, float)) or keepalive <= 0:
            keepalive = DEFAULT_KEEPALIVE_TIMEOUT

        return session_id, keepalive

    async def _read_loop(self) -> None:
        """Read frames until the session closes or fails."""
        try:
            while self.state == SessionState.ACTIVE:
                silence_limit = self.keepalive_timeout + KEEPALIVE_GRACE_SECONDS
                try:
                    raw = await asyncio.wait_for(self._websocket.recv(), timeout=silence_limit)
                except asyncio.TimeoutError:
                    raise SessionNetworkError(f"No EventSub traffic for {silence_limit}s")

                await self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except ChatSessionError as e:
            await self._fail(e)
        except ConnectionClosed as e:
            await self._fail(SessionNetworkError(f"EventSub connection closed: {e}"))
        except (OSError, WebSocketException) as e:
            await self._fail(SessionNetworkError(f"EventSub connection error: {e}"))
        except Exception as e:
            self.logger.exception("Unexpected error in EventSub read loop")
            await self._fail(SessionNetworkError(f"Unexpected EventSub error: {e}"))

    async def _handle_frame(self, raw: Any) -> None:
        if self.debug_logging:
            self.logger.debug(f"EventSub frame: {raw}")

        frame = self._decode_frame(raw)
        if frame is None:
            return

        message_type = frame['metadata'].get('message_type')

        if message_type == 'session_keepalive':
            return
        elif message_type == 'notification':
            await self._handle_notification(frame)
        elif message_type == 'session_reconnect':
            await self._handle_reconnect(frame)
        elif message_type == 'revocation':
            subscription = (frame.get('payload') or {}).get('subscription') or {}
            raise SubscriptionError(f"Chat subscription revoked: {subscription.get('status', 'unknown')}")
        else:
            self.logger.debug(f"Ignoring EventSub frame of type {message_type}")

    async def _handle_notification(self, frame: Dict[str, Any]) -> None:
        subscription_type = frame['metadata'].get('subscription_type')
        if subscription_type != CHAT_MESSAGE_SUBSCRIPTION:
            self.logger.debug(f"Ignoring notification for {subscription_type}")
            return

        try:
            message = ChatMessage.from_event((frame.get('payload') or {}).get('event'))
        except ValueError as e:
            self.logger.warning(f"Dropping malformed chat notification: {e}")
            return

        if message.sender_user_id == self.bot_id:
            return

        for observer in list(self._message_observers):
            try:
                observer(message)
            except Exception as e:
                self.logger.error(f"Error in chat message observer: {e}")

        if self.dispatcher is None:
            return

        try:
            response = self.dispatcher.process_message(message)
        except Exception:
            self.logger.exception(f"Command handling failed for message {message.message_id}")
            return

        if response is not None:
            await self._send(response, message.message_id)

    async def _handle_reconnect(self, frame: Dict[str, Any]) -> None:
        """Move to the reconnect URL, keeping the existing subscription."""
        session = (frame.get('payload') or {}).get('session') or {}
        reconnect_url = session.get('reconnect_url')
        if not isinstance(reconnect_url, str) or not reconnect_url:
            raise SessionNetworkError("session_reconnect frame has no reconnect_url")

        self.logger.info("EventSub requested reconnect, switching connection")
        try:
            new_websocket = await websockets.connect(reconnect_url)
        except (OSError, WebSocketException) as e:
            raise SessionNetworkError(f"Failed to connect to reconnect URL: {e}")

        try:
            session_id, keepalive = await self._await_welcome(new_websocket)
        except ChatSessionError:
            await self._close_websocket(new_websocket)
            raise

        old_websocket = self._websocket
        self._websocket = new_websocket
        self.session_id = session_id
        self.keepalive_timeout = keepalive
        await self._close_websocket(old_websocket)

        self.logger.info(f"Reconnected to EventSub session {session_id}")
