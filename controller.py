"""
Main controller for the Now-Playing Chat Bot.

This module orchestrates the Twitch integration: the device authorization
flow, the chat session lifecycle, and the stored credentials. It is the single
place where component errors become user-facing status messages and state
transitions, which it publishes to observers as typed events.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from bot_commands import CommandDispatcher, build_default_dispatcher
from chat_session import (
    AlreadyConnectedError,
    ChatSession,
    ChatSessionError,
    SessionAuthenticationError,
    SessionState,
)
from config_manager import ConfigurationManager, MissingClientIDError
from credential_store import CredentialStore, CredentialStoreError
from device_auth import DeviceAuthClient, DeviceAuthError
from models import (
    AuthPhase,
    AuthState,
    AuthStateChanged,
    ChatMessage,
    ChatMessageReceived,
    ConnectionState,
    ConnectionStateChanged,
    ConnectionStatus,
    Credential,
    IntegrationState,
    ReauthNeededChanged,
    StatusMessageChanged,
)
from now_playing import NowPlayingProvider
from platform_api import AuthenticationFailedError, PlatformAPI, PlatformAPIError


MAX_CHANNEL_NAME_LENGTH = 25

REAUTH_MESSAGE = "Twitch rejected the saved token. Please sign in again."
RECONNECT_EXHAUSTED_REASON = "Reconnect attempts exhausted"


class IntegrationController:
    """
    Facade over authorization, credentials and the chat session.

    All state is owned and written by the controller; observers receive
    AuthStateChanged, ConnectionStateChanged, StatusMessageChanged,
    ReauthNeededChanged and ChatMessageReceived events in emission order.
    """

    def __init__(
        self,
        config_manager: ConfigurationManager,
        credential_store: CredentialStore,
        now_playing_provider: NowPlayingProvider,
        platform_api: Optional[PlatformAPI] = None,
        device_auth_client: Optional[DeviceAuthClient] = None,
        dispatcher: Optional[CommandDispatcher] = None,
        session_factory: Optional[Callable[..., ChatSession]] = None
    ):
        """
        Initialize the controller.

        Args:
            config_manager: Loaded configuration
            credential_store: Where the token and bot identity are kept
            now_playing_provider: Source of track descriptions for commands
            platform_api: Helix client; built from configuration if omitted
            device_auth_client: Device flow client; built from configuration if omitted
            dispatcher: Command dispatcher; the built-in song commands if omitted
            session_factory: Called with ``on_state_change`` to create chat sessions
        """
        self.config_manager = config_manager
        self.credential_store = credential_store
        self.now_playing_provider = now_playing_provider
        self.logger = logging.getLogger(__name__)

        twitch_config = config_manager.get_twitch_config()
        self.platform_api = platform_api or PlatformAPI(
            api_base_url=twitch_config['api_base_url'],
            auth_base_url=twitch_config['auth_base_url'],
            required_scopes=config_manager.get_scopes(),
            timeout=twitch_config['request_timeout']
        )
        self.device_auth_client = device_auth_client or DeviceAuthClient(
            auth_base_url=twitch_config['auth_base_url'],
            timeout=twitch_config['request_timeout']
        )
        self.dispatcher = dispatcher or build_default_dispatcher(
            now_playing_provider, config_manager.get_commands_config()
        )
        self.session_factory = session_factory or self._create_session

        # Published state
        self.auth_state = AuthState.idle()
        self.connection_status = ConnectionStatus()
        self.status_message = ""
        self.reauth_needed = False
        self.credential = Credential()

        self._observers: List[Callable[[Any], None]] = []

        # Authorization flow
        self._auth_task: Optional[asyncio.Task] = None
        self._auth_cancel_event: Optional[asyncio.Event] = None
        # Created on first use, inside the running loop
        self._auth_lock: Optional[asyncio.Lock] = None

        # Chat session
        self._session: Optional[ChatSession] = None
        self._connect_generation = 0
        self._channel_login = ""
        self._reconnect_task: Optional[asyncio.Task] = None

        self.load_credential()

    # Observers

    def add_observer(self, callback: Callable[[Any], None]) -> None:
        """Register a callback for controller events."""
        self._observers.append(callback)

    def remove_observer(self, callback: Callable[[Any], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def _emit(self, event: Any) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                self.logger.error(f"Error in controller observer: {e}")

    def _set_auth_state(self, state: AuthState) -> None:
        self.auth_state = state
        self._emit(AuthStateChanged(state))

    def _set_connection_status(self, status: ConnectionStatus) -> None:
        self.connection_status = status
        self._emit(ConnectionStateChanged(status))

    def _set_status_message(self, message: str) -> None:
        self.status_message = message
        self._emit(StatusMessageChanged(message))

    def _set_reauth_needed(self, reauth_needed: bool) -> None:
        if self.reauth_needed == reauth_needed:
            return
        self.reauth_needed = reauth_needed
        self._emit(ReauthNeededChanged(reauth_needed))

    # Summary state

    @property
    def is_connected(self) -> bool:
        return self.connection_status.state == ConnectionState.CONNECTED

    @property
    def integration_state(self) -> IntegrationState:
        """Single state for consumers that only render one indicator."""
        if self.auth_state.phase == AuthPhase.ERROR:
            return IntegrationState.ERROR
        if self.connection_status.state == ConnectionState.ERROR:
            return IntegrationState.ERROR
        if self.is_connected or self.credential.is_signed_in:
            return IntegrationState.CONNECTED
        if self.auth_state.is_in_progress:
            return IntegrationState.AUTHORIZING
        return IntegrationState.NOT_CONNECTED

    @property
    def status_summary(self) -> str:
        if self.reauth_needed:
            return "Reauth needed"
        if self.is_connected:
            return "Connected"
        if self.credential.is_signed_in:
            return "Signed in"
        return "Not signed in"

    # Credentials

    def load_credential(self) -> Credential:
        """Reload the stored credential."""
        try:
            self.credential = self.credential_store.load_credential()
        except CredentialStoreError as e:
            self.logger.error(f"Failed to load stored credentials: {e}")
            self.credential = Credential()
        return self.credential

    def save_channel(self, channel: str) -> bool:
        """Remember the channel to join; returns False if it could not be saved."""
        channel = channel.strip().lower()
        try:
            self.credential_store.save_channel(channel)
        except CredentialStoreError as e:
            self.logger.error(f"Failed to save channel: {e}")
            self._set_status_message(f"Failed to save: {e}")
            return False
        self.credential.channel_id = channel
        return True

    async def sign_out(self) -> None:
        """Leave chat, stop any authorization, and delete every stored key."""
        self.logger.info("Signing out of Twitch")
        await self.cancel_authorization()
        await self.disconnect()

        try:
            self.credential_store.clear()
        except CredentialStoreError as e:
            self.logger.error(f"Failed to clear stored credentials: {e}")

        self.credential = Credential()
        self._set_reauth_needed(False)
        if self.auth_state.phase != AuthPhase.IDLE:
            self._set_auth_state(AuthState.idle())
        self._set_status_message("")

    async def validate_stored_token(self) -> bool:
        """
        Check the stored token against Twitch.

        Returns:
            True if the token is valid and has every configured scope. With no
            stored token, returns False without asking for reauthentication.
        """
        token = self.load_credential().oauth_token
        if not token:
            return False

        is_valid = await self.platform_api.validate_token(token, self.config_manager.get_scopes())
        self._set_reauth_needed(not is_valid)
        if not is_valid:
            self.logger.warning("Stored Twitch token is no longer valid")
            self._set_status_message("Reauth needed")
        return is_valid

    # Authorization

    async def start_authorization(self, client_id: Optional[str] = None, scopes: Optional[List[str]] = None) -> Optional[asyncio.Task]:
        """
        Start the device authorization flow in a background task.

        Any authorization already running is cancelled first.

        Args:
            client_id: Client ID override; resolved from env/config if omitted
            scopes: Scopes override; taken from configuration if omitted

        Returns:
            The running authorization task, or None if no client ID is configured
        """
        async with self._authorization_lock():
            await self._stop_authorization()

            self._set_auth_state(AuthState.requesting_code())
            self._set_status_message("Requesting authorization code from Twitch...")

            if not client_id:
                try:
                    client_id = self.config_manager.resolve_client_id()
                except MissingClientIDError:
                    self.logger.error("Cannot authorize: Twitch Client ID is not configured")
                    self._set_auth_state(AuthState.error("Missing Client ID"))
                    self._set_status_message("Missing Twitch Client ID. Set TWITCH_CLIENT_ID or twitch.client_id in the config file.")
                    return None

            scopes = list(scopes or self.config_manager.get_scopes())
            cancel_event = asyncio.Event()
            self._auth_cancel_event = cancel_event
            self._auth_task = asyncio.create_task(self._run_authorization(client_id, scopes, cancel_event))
            return self._auth_task

    async def cancel_authorization(self) -> None:
        """Stop a running authorization. Does nothing when none is running."""
        async with self._authorization_lock():
            if not await self._stop_authorization():
                return

            self.logger.info("Authorization cancelled")
            self._set_auth_state(AuthState.idle())
            self._set_status_message("")

    def _authorization_lock(self) -> asyncio.Lock:
        """Serializes starting and stopping the authorization task."""
        if self._auth_lock is None:
            self._auth_lock = asyncio.Lock()
        return self._auth_lock

    async def _stop_authorization(self) -> bool:
        """Cancel and await the authorization task. Returns True if one was running."""
        task = self._auth_task
        cancel_event = self._auth_cancel_event
        self._auth_task = None
        self._auth_cancel_event = None

        if task is None or task.done():
            return False

        if cancel_event is not None:
            cancel_event.set()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def _run_authorization(self, client_id: str, scopes: List[str], cancel_event: asyncio.Event) -> None:
        try:
            session = await self.device_auth_client.request_device_code(client_id, scopes)
            self._set_auth_state(AuthState.waiting_for_auth(
                session.user_code, session.verification_uri, session.verification_uri_complete or ""
            ))
            self._set_status_message("Code ready! Go to Twitch and enter the code above.")

            token = await self.device_auth_client.poll_for_token(
                session,
                client_id,
                on_progress=self._set_status_message,
                cancel_event=cancel_event
            )
            if token is None:
                return

            self._set_status_message("Authorization successful! Saving credentials...")
            self.credential_store.save_token(token)
            self.credential_store.clear_identity()
            self.credential.oauth_token = token
            self.credential.bot_user_id = ""
            self.credential.bot_display_name = ""
            self._set_reauth_needed(False)

            self._set_auth_state(AuthState.resolving_identity())
            identity = await self.platform_api.fetch_authenticated_identity(token, client_id)
            self.credential_store.save_identity(identity)
            self.credential.bot_user_id = identity.user_id
            self.credential.bot_display_name = identity.resolved_name

            self._set_auth_state(AuthState.idle())
            self._set_status_message(f"Bot identity resolved: {identity.resolved_name}")
            self.logger.info(f"Authorized as {identity.resolved_name}")

        except DeviceAuthError as e:
            self._fail_authorization(e.reason)
        except AuthenticationFailedError as e:
            self._fail_authorization(str(e))
        except PlatformAPIError as e:
            self._fail_authorization(f"Could not resolve bot identity: {e}")
        except CredentialStoreError as e:
            self._fail_authorization(f"Keychain save failed: {e}")
        finally:
            if self._auth_task is asyncio.current_task():
                self._auth_task = None
                self._auth_cancel_event = None

    def _fail_authorization(self, reason: str) -> None:
        self.logger.error(f"Authorization failed: {reason}")
        self._set_auth_state(AuthState.error(reason))
        self._set_status_message(f"OAuth setup failed: {reason}")

    # Chat connection

    def _create_session(self, on_state_change: Callable[[ChatSession, SessionState], None]) -> ChatSession:
        twitch_config = self.config_manager.get_twitch_config()
        return ChatSession(
            self.platform_api,
            dispatcher=self.dispatcher,
            eventsub_url=twitch_config['eventsub_url'],
            welcome_timeout=twitch_config['welcome_timeout'],
            on_state_change=on_state_change,
            debug_logging=self.config_manager.get_bot_config().get('debug_logging', False)
        )

    async def connect_to_channel(
        self,
        channel_login: Optional[str] = None,
        token: Optional[str] = None,
        client_id: Optional[str] = None
    ) -> bool:
        """
        Join a channel's chat.

        Args:
            channel_login: Channel to join; the saved or configured channel if omitted
            token: Token override; the stored token if omitted
            client_id: Client ID override; resolved from env/config if omitted

        Returns:
            True once the session is active

        Raises:
            AlreadyConnectedError: If a connection is in progress or established
        """
        if self.connection_status.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise AlreadyConnectedError()

        await self._cancel_reconnect()
        return await self._connect(channel_login, token, client_id)

    async def _connect(
        self,
        channel_login: Optional[str] = None,
        token: Optional[str] = None,
        client_id: Optional[str] = None
    ) -> bool:
        if channel_login is None:
            channel_login = self.credential.channel_id or self.config_manager.get_bot_config().get('channel', '')
        channel = channel_login.strip().lower()

        token = token or self.credential.oauth_token
        if not token:
            self._set_status_message("No OAuth token found. Please sign in first.")
            return False

        if not channel:
            self._set_status_message("Please enter a channel name")
            return False

        if len(channel) > MAX_CHANNEL_NAME_LENGTH:
            self._set_status_message("Channel name too long")
            return False

        if not client_id:
            try:
                client_id = self.config_manager.resolve_client_id()
            except MissingClientIDError:
                self._set_status_message("Client ID not configured")
                return False

        self._connect_generation += 1
        generation = self._connect_generation

        self.logger.info(f"Connecting to #{channel}")
        self._set_connection_status(ConnectionStatus(ConnectionState.CONNECTING))
        self._set_status_message("Connecting to Twitch...")

        try:
            bot_id = self.credential.bot_user_id
            if not bot_id:
                identity = await self.platform_api.fetch_authenticated_identity(token, client_id)
                self.credential_store.save_identity(identity)
                self.credential.bot_user_id = identity.user_id
                self.credential.bot_display_name = identity.resolved_name
                bot_id = identity.user_id

            if generation != self._connect_generation:
                return False

            broadcaster_id = await self.platform_api.resolve_user_id(channel, token, client_id)
            if generation != self._connect_generation:
                return False

            session = self.session_factory(on_state_change=self._on_session_state_change)
            session.add_message_observer(self._on_chat_message)
            self._session = session
            await session.open(broadcaster_id, bot_id, token, client_id)

        except (AuthenticationFailedError, SessionAuthenticationError) as e:
            self.logger.warning(f"Connection to #{channel} rejected: {e}")
            if generation == self._connect_generation:
                self._set_reauth_needed(True)
            self._connection_failed(REAUTH_MESSAGE, generation)
            return False
        except (PlatformAPIError, ChatSessionError, CredentialStoreError) as e:
            self.logger.error(f"Connection to #{channel} failed: {e}")
            self._connection_failed(str(e), generation)
            return False

        if generation != self._connect_generation:
            return False

        self._channel_login = channel
        self.save_channel(channel)
        self._set_connection_status(ConnectionStatus(ConnectionState.CONNECTED))
        self._set_status_message(f"Connected to #{channel}")
        self.logger.info(f"Connected to #{channel}")

        await self._send_connection_message(session)
        return True

    def _connection_failed(self, reason: str, generation: int) -> None:
        if generation != self._connect_generation:
            return
        self._session = None
        self._set_connection_status(ConnectionStatus.error(reason))
        self._set_status_message(f"Connection failed: {reason}")

    async def _send_connection_message(self, session: ChatSession) -> None:
        bot_config = self.config_manager.get_bot_config()
        message = bot_config.get('connection_message', '').strip()
        if not bot_config.get('send_connection_message', False) or not message:
            return

        try:
            await session.send_message(message)
        except ChatSessionError as e:
            self.logger.warning(f"Could not send connection message: {e}")

    async def disconnect(self) -> None:
        """Leave chat. Safe to call when not connected."""
        self._connect_generation += 1
        await self._cancel_reconnect()

        session, self._session = self._session, None
        if session is not None:
            await session.close()

        self.dispatcher.reset_cooldowns()

        if self.connection_status.state != ConnectionState.DISCONNECTED:
            self.logger.info("Disconnected from Twitch chat")
            self._set_connection_status(ConnectionStatus(ConnectionState.DISCONNECTED))
            self._set_status_message("Disconnected")

    def _on_chat_message(self, message: ChatMessage) -> None:
        self._emit(ChatMessageReceived(message))

    def _on_session_state_change(self, session: ChatSession, state: SessionState) -> None:
        if session is not self._session or state != SessionState.FAILED:
            return
        if self.connection_status.state != ConnectionState.CONNECTED:
            # Failures while opening are reported by _connect
            return

        self._session = None
        error = session.failure
        reason = str(error) if error else "Chat connection lost"

        if isinstance(error, SessionAuthenticationError):
            self._set_reauth_needed(True)
            self._set_connection_status(ConnectionStatus.error(REAUTH_MESSAGE))
            self._set_status_message("Reauth needed")
            return

        self._set_connection_status(ConnectionStatus.error(reason))
        self._set_status_message(f"Connection lost: {reason}")

        if self.config_manager.get_reconnect_config().get('enabled', False):
            self._reconnect_task = asyncio.create_task(self._reconnect_with_backoff(self._channel_login))

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reconnect_with_backoff(self, channel: str) -> None:
        """Reconnect to the channel with exponential backoff."""
        reconnect_config = self.config_manager.get_reconnect_config()
        max_attempts = reconnect_config.get('max_attempts', 5)
        max_delay = reconnect_config.get('max_delay', 60.0)
        delay = reconnect_config.get('base_delay', 2.0)
        attempt = 0

        try:
            while attempt < max_attempts:
                attempt += 1
                self.logger.info(f"Reconnecting to #{channel} (attempt {attempt}/{max_attempts}) in {delay}s")
                self._set_status_message(f"Reconnecting (attempt {attempt}/{max_attempts})...")

                await self._sleep(delay)

                if await self._connect(channel):
                    self.logger.info(f"Successfully reconnected to #{channel}")
                    return

                if self.reauth_needed:
                    self.logger.warning("Not retrying: Twitch rejected the token")
                    return

                delay = min(delay * 2, max_delay)

            self.logger.error(f"Failed to reconnect to #{channel} after {max_attempts} attempts")
            self._set_connection_status(ConnectionStatus.error(RECONNECT_EXHAUSTED_REASON))
            self._set_status_message(f"Connection failed: gave up after {max_attempts} attempts")
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def shutdown(self) -> None:
        """Stop everything and release HTTP sessions."""
        await self.cancel_authorization()
        await self.disconnect()
        await self.platform_api.close()
        await self.device_auth_client.close()
