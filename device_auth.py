"""
OAuth 2.0 Device Authorization Grant client for Twitch.

Obtains a bot user access token without a client secret: the user enters a
short code on the Twitch activation page while this client polls the token
endpoint until the grant is approved, denied or expires.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from http_client import HTTPClient
from models import DeviceCodeSession


logger = logging.getLogger(__name__)

DEFAULT_AUTH_BASE_URL = "https://id.twitch.tv/oauth2"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

SLOW_DOWN_INCREMENT = 5
STILL_WAITING_EVERY = 10

WAITING_MESSAGE = "Waiting for Twitch approval..."
STILL_WAITING_MESSAGE = "Still waiting for Twitch approval... Please check your browser."


class DeviceAuthError(Exception):
    """Base exception for device authorization failures."""

    default_reason = "Device authorization failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class InvalidResponseError(DeviceAuthError):
    """Raised when Twitch returns a body that cannot be interpreted."""
    default_reason = "Invalid response from Twitch"


class AccessDeniedError(DeviceAuthError):
    """Raised when the user declines the authorization request."""
    default_reason = "access_denied"


class ExpiredTokenError(DeviceAuthError):
    """Raised when the device code expired before the user approved it."""
    default_reason = "expired_token"


class InvalidClientError(DeviceAuthError):
    """Raised when Twitch rejects the client ID."""
    default_reason = "invalid_client"


class DeviceAuthUnknownError(DeviceAuthError):
    """Raised for any other error reported by Twitch."""
    pass


class DeviceAuthNetworkError(DeviceAuthError):
    """Raised when the OAuth endpoints cannot be reached."""
    default_reason = "Network error while contacting Twitch"


class DeviceAuthClient(HTTPClient):
    """Client for the Twitch device-code endpoints."""

    network_error_class = DeviceAuthNetworkError

    def __init__(self, auth_base_url: str = DEFAULT_AUTH_BASE_URL, timeout: float = 10.0, session=None):
        """
        Initialize the device authorization client.

        Args:
            auth_base_url: Base URL of the Twitch OAuth endpoints
            timeout: Request timeout in seconds
            session: Optional requests session
        """
        super().__init__(timeout=timeout, session=session)
        self.auth_base_url = auth_base_url.rstrip('/')
        self.logger = logging.getLogger(__name__)

    async def request_device_code(self, client_id: str, scopes: List[str]) -> DeviceCodeSession:
        """
        Start a device authorization.

        Args:
            client_id: Twitch application client ID
            scopes: OAuth scopes to request

        Returns:
            The device-code session to show to the user and poll with

        Raises:
            DeviceAuthUnknownError: If Twitch answers with a non-2xx status
            InvalidResponseError: If the body lacks the required fields
            DeviceAuthNetworkError: If Twitch cannot be reached
        """
        response = await self._make_request(
            'POST',
            f"{self.auth_base_url}/device",
            data={'client_id': client_id, 'scope': ' '.join(scopes)}
        )

        if not self._is_success(response):
            body = self._parse_json(response)
            reason = body.get('message') if body and isinstance(body.get('message'), str) else response.text
            self.logger.error(f"Device code request failed with HTTP {response.status_code}: {reason}")
            raise DeviceAuthUnknownError(reason or f"HTTP {response.status_code}")

        body = self._parse_json(response)
        if body is None:
            raise InvalidResponseError("Device code response is not a JSON object")

        try:
            session = DeviceCodeSession.from_response(body)
        except ValueError as e:
            self.logger.error(f"Malformed device code response: {e}")
            raise InvalidResponseError(str(e))

        self.logger.info(f"Received device code, user code {session.user_code} (expires in {session.expires_in}s)")
        return session

    async def poll_for_token(
        self,
        session: DeviceCodeSession,
        client_id: str,
        on_progress: Optional[Callable[[str], None]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[str]:
        """
        Poll the token endpoint until the user approves or the grant fails.

        Args:
            session: Session returned by ``request_device_code``
            client_id: Twitch application client ID
            on_progress: Called with a human readable message on each poll
            cancel_event: When set, polling stops and None is returned

        Returns:
            The access token, or None if polling was cancelled

        Raises:
            AccessDeniedError: If the user declined
            ExpiredTokenError: If the device code expired
            InvalidClientError: If the client ID was rejected
            DeviceAuthUnknownError: For any other server-reported error
            InvalidResponseError: If a response cannot be interpreted
            DeviceAuthNetworkError: If Twitch cannot be reached
        """
        interval = session.interval
        poll_count = 0
        token_url = f"{self.auth_base_url}/token"

        while True:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info("Device authorization polling cancelled")
                return None

            await self._sleep(interval)

            if cancel_event is not None and cancel_event.is_set():
                self.logger.info("Device authorization polling cancelled")
                return None

            poll_count += 1
            if on_progress:
                on_progress(STILL_WAITING_MESSAGE if poll_count % STILL_WAITING_EVERY == 0 else WAITING_MESSAGE)

            response = await self._make_request(
                'POST',
                token_url,
                data={
                    'client_id': client_id,
                    'device_code': session.device_code,
                    'grant_type': DEVICE_CODE_GRANT_TYPE
                }
            )
            body = self._parse_json(response)

            if self._is_success(response):
                token = body.get('access_token') if body else None
                if not isinstance(token, str) or not token:
                    raise InvalidResponseError("Token response is missing access_token")
                self.logger.info(f"Device authorization approved after {poll_count} polls")
                return token

            message = body.get('message') if body else None
            if not isinstance(message, str):
                raise InvalidResponseError(f"Unexpected token response (HTTP {response.status_code})")

            if 'authorization_pending' in message:
                continue
            elif 'slow_down' in message:
                interval += SLOW_DOWN_INCREMENT
                self.logger.info(f"Twitch asked to slow down, polling every {interval}s")
            elif 'access_denied' in message:
                raise AccessDeniedError(message)
            elif 'expired_token' in message or 'invalid_grant' in message:
                raise ExpiredTokenError(message)
            elif 'invalid_client' in message:
                raise InvalidClientError(message)
            else:
                self.logger.error(f"Unexpected device authorization error: {message}")
                raise DeviceAuthUnknownError(message)

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
