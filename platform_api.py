"""
Twitch Helix API client.

Stateless wrapper around the handful of Helix endpoints the bot needs: user
lookups, sending chat messages, and creating EventSub subscriptions. Token
validation goes through the OAuth validate endpoint.
"""

import logging
from typing import Dict, Any, List, Optional

import requests

from http_client import HTTPClient
from models import BotIdentity


DEFAULT_API_BASE_URL = "https://api.twitch.tv/helix"
DEFAULT_AUTH_BASE_URL = "https://id.twitch.tv/oauth2"
DEFAULT_REQUIRED_SCOPES = ['user:read:chat', 'user:write:chat']

CHAT_MESSAGE_SUBSCRIPTION = "channel.chat.message"


class PlatformAPIError(Exception):
    """Base exception for Helix API errors."""
    pass


class PlatformNetworkError(PlatformAPIError):
    """Raised on transport failures, unexpected statuses, and unparsable bodies."""
    pass


class PlatformHTTPError(PlatformNetworkError):
    """Raised when an endpoint answers with an error status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}" if body else f"HTTP {status_code}")


class AuthenticationFailedError(PlatformAPIError):
    """Raised when Twitch rejects the access token (HTTP 401)."""

    def __init__(self, message: str = "Twitch rejected the access token"):
        super().__init__(message)


class PlatformAPI(HTTPClient):
    """Client for the Twitch Helix API."""

    network_error_class = PlatformNetworkError

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_BASE_URL,
        auth_base_url: str = DEFAULT_AUTH_BASE_URL,
        required_scopes: Optional[List[str]] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Helix client.

        Args:
            api_base_url: Base URL of the Helix API
            auth_base_url: Base URL of the OAuth endpoints (for validate)
            required_scopes: Scopes a token must carry to be considered valid
            timeout: Request timeout in seconds
            session: Optional requests session
        """
        super().__init__(timeout=timeout, session=session)
        self.api_base_url = api_base_url.rstrip('/')
        self.auth_base_url = auth_base_url.rstrip('/')
        self.required_scopes = list(required_scopes or DEFAULT_REQUIRED_SCOPES)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _helix_headers(token: str, client_id: str) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {token}",
            'Client-ID': client_id
        }

    def _handle_response(self, response: requests.Response, endpoint: str) -> Dict[str, Any]:
        """
        Check a Helix response and decode its body.

        Raises:
            AuthenticationFailedError: On HTTP 401
            PlatformHTTPError: On any other non-2xx status
            PlatformNetworkError: If the body is not a JSON object
        """
        if response.status_code == 401:
            self.logger.warning(f"{endpoint} returned 401 Unauthorized")
            raise AuthenticationFailedError()

        if not self._is_success(response):
            self.logger.error(f"{endpoint} returned HTTP {response.status_code}: {response.text}")
            raise PlatformHTTPError(response.status_code, response.text)

        body = self._parse_json(response)
        if body is None:
            self.logger.error(f"{endpoint} returned an unparsable body")
            raise PlatformNetworkError(f"Invalid JSON response from {endpoint}")
        return body

    async def _get_users(self, token: str, client_id: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        response = await self._make_request(
            'GET',
            f"{self.api_base_url}/users",
            headers=self._helix_headers(token, client_id),
            params=params
        )
        body = self._handle_response(response, "GET /users")
        data = body.get('data')
        if not isinstance(data, list):
            raise PlatformNetworkError("Users response is missing data")
        return data

    async def resolve_user_id(self, login: str, token: str, client_id: str) -> str:
        """
        Resolve a channel login to its numeric user ID.

        Args:
            login: Channel login name
            token: Bot access token
            client_id: Twitch application client ID

        Returns:
            The broadcaster's user ID

        Raises:
            PlatformNetworkError: If the user cannot be resolved
            AuthenticationFailedError: If the token was rejected
        """
        users = await self._get_users(token, client_id, params={'login': login})
        if not users or not isinstance(users[0], dict) or not users[0].get('id'):
            self.logger.warning(f"No Twitch user found for login '{login}'")
            raise PlatformNetworkError("Unable to resolve username")
        return str(users[0]['id'])

    async def fetch_authenticated_identity(self, token: str, client_id: str) -> BotIdentity:
        """
        Look up the account that owns the access token.

        Raises:
            AuthenticationFailedError: If the token was rejected
            PlatformNetworkError: On any other failure
        """
        users = await self._get_users(token, client_id)
        if not users or not isinstance(users[0], dict):
            raise PlatformNetworkError("Authenticated user lookup returned no data")

        user = users[0]
        user_id = user.get('id')
        login = user.get('login')
        if not isinstance(user_id, str) or not user_id or not isinstance(login, str):
            raise PlatformNetworkError("Authenticated user lookup returned incomplete data")

        identity = BotIdentity(user_id=user_id, login=login, display_name=user.get('display_name') or "")
        self.logger.info(f"Authenticated as {identity.resolved_name} ({identity.user_id})")
        return identity

    async def validate_token(self, token: str, required_scopes: Optional[List[str]] = None) -> bool:
        """
        Check that a token is live and carries every required scope.

        Returns:
            True if the token is valid, False otherwise. Never raises for
            rejected tokens or network failures.
        """
        scopes_needed = self.required_scopes if required_scopes is None else required_scopes

        try:
            response = await self._make_request(
                'GET',
                f"{self.auth_base_url}/validate",
                headers={'Authorization': f"OAuth {token}"}
            )
        except PlatformNetworkError as e:
            self.logger.warning(f"Token validation failed: {e}")
            return False

        if not self._is_success(response):
            self.logger.info(f"Token validation rejected with HTTP {response.status_code}")
            return False

        body = self._parse_json(response)
        scopes = body.get('scopes') if body else None
        if not isinstance(scopes, list):
            self.logger.warning("Token validation response has no scopes")
            return False

        missing = [scope for scope in scopes_needed if scope not in scopes]
        if missing:
            self.logger.warning(f"Token is missing required scopes: {', '.join(missing)}")
            return False

        return True

    async def send_chat_message(
        self,
        broadcaster_id: str,
        sender_id: str,
        text: str,
        token: str,
        client_id: str,
        reply_to_message_id: Optional[str] = None
    ) -> bool:
        """
        Send a chat message, optionally as a reply.

        Returns:
            True if Twitch accepted the message, False if it was dropped

        Raises:
            AuthenticationFailedError: If the token was rejected
            PlatformNetworkError: On any other failure
        """
        payload = {
            'broadcaster_id': broadcaster_id,
            'sender_id': sender_id,
            'message': text
        }
        if reply_to_message_id:
            payload['reply_parent_message_id'] = reply_to_message_id

        response = await self._make_request(
            'POST',
            f"{self.api_base_url}/chat/messages",
            headers=self._helix_headers(token, client_id),
            json_body=payload
        )
        body = self._handle_response(response, "POST /chat/messages")

        data = body.get('data')
        result = data[0] if isinstance(data, list) and data and isinstance(data[0], dict) else {}
        if result.get('is_sent') is False:
            drop_reason = result.get('drop_reason') or {}
            reason = drop_reason.get('message') if isinstance(drop_reason, dict) else drop_reason
            self.logger.warning(f"Chat message was dropped: {reason}")
            return False

        return True

    async def create_event_stream_subscription(
        self,
        session_id: str,
        broadcaster_id: str,
        bot_id: str,
        token: str,
        client_id: str
    ) -> Dict[str, Any]:
        """
        Subscribe a WebSocket session to chat messages for a channel.

        Returns:
            The decoded subscription response

        Raises:
            AuthenticationFailedError: If the token was rejected
            PlatformHTTPError: If the subscription was refused
        """
        payload = {
            'type': CHAT_MESSAGE_SUBSCRIPTION,
            'version': '1',
            'condition': {
                'broadcaster_user_id': broadcaster_id,
                'user_id': bot_id
            },
            'transport': {
                'method': 'websocket',
                'session_id': session_id
            }
        }

        response = await self._make_request(
            'POST',
            f"{self.api_base_url}/eventsub/subscriptions",
            headers=self._helix_headers(token, client_id),
            json_body=payload
        )
        body = self._handle_response(response, "POST /eventsub/subscriptions")
        self.logger.info(f"Subscribed to {CHAT_MESSAGE_SUBSCRIPTION} for broadcaster {broadcaster_id}")
        return body
