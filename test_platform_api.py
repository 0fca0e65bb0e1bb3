#!/usr/bin/env python3
"""
Unit tests for the Helix API client.
"""

import pytest
from unittest.mock import Mock
import requests

from models import BotIdentity
from platform_api import (
    PlatformAPI, PlatformNetworkError, PlatformHTTPError, AuthenticationFailedError,
    CHAT_MESSAGE_SUBSCRIPTION
)


def make_response(status_code, body=None, text=None):
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = body
    response.text = text if text is not None else str(body or "")
    return response


@pytest.fixture
def api():
    return PlatformAPI(
        api_base_url="https://api.example/helix",
        auth_base_url="https://id.example/oauth2",
        session=Mock()
    )


class TestUsers:
    """Test user lookups."""

    @pytest.mark.asyncio
    async def test_resolve_user_id(self, api):
        api._session.request.return_value = make_response(200, {'data': [{'id': '1234', 'login': 'somechannel'}]})

        user_id = await api.resolve_user_id('somechannel', 'tok', 'cid')

        assert user_id == '1234'
        args, kwargs = api._session.request.call_args
        assert args == ('GET', 'https://api.example/helix/users')
        assert kwargs['params'] == {'login': 'somechannel'}
        assert kwargs['headers'] == {'Authorization': 'Bearer tok', 'Client-ID': 'cid'}

    @pytest.mark.asyncio
    async def test_resolve_unknown_user(self, api):
        api._session.request.return_value = make_response(200, {'data': []})

        with pytest.raises(PlatformNetworkError, match="Unable to resolve username"):
            await api.resolve_user_id('nobody', 'tok', 'cid')

    @pytest.mark.asyncio
    async def test_fetch_authenticated_identity(self, api):
        api._session.request.return_value = make_response(200, {
            'data': [{'id': 'BOT1', 'login': 'nowbot', 'display_name': 'NowBot'}]
        })

        identity = await api.fetch_authenticated_identity('tok', 'cid')

        assert identity == BotIdentity(user_id='BOT1', login='nowbot', display_name='NowBot')
        assert identity.resolved_name == 'NowBot'
        assert api._session.request.call_args.kwargs['params'] is None

    @pytest.mark.asyncio
    async def test_identity_falls_back_to_login(self, api):
        api._session.request.return_value = make_response(200, {
            'data': [{'id': 'BOT1', 'login': 'nowbot', 'display_name': ''}]
        })

        identity = await api.fetch_authenticated_identity('tok', 'cid')

        assert identity.resolved_name == 'nowbot'

    @pytest.mark.asyncio
    async def test_identity_unauthorized(self, api):
        api._session.request.return_value = make_response(401, {'status': 401, 'message': 'Invalid OAuth token'})

        with pytest.raises(AuthenticationFailedError):
            await api.fetch_authenticated_identity('bad', 'cid')

    @pytest.mark.asyncio
    async def test_identity_server_error(self, api):
        api._session.request.return_value = make_response(500, {'status': 500})

        with pytest.raises(PlatformNetworkError):
            await api.fetch_authenticated_identity('tok', 'cid')

    @pytest.mark.asyncio
    async def test_identity_unparsable_body(self, api):
        api._session.request.return_value = make_response(200)

        with pytest.raises(PlatformNetworkError):
            await api.fetch_authenticated_identity('tok', 'cid')

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, api):
        api._session.request.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(PlatformNetworkError):
            await api.fetch_authenticated_identity('tok', 'cid')


class TestValidateToken:
    """Test token validation."""

    @pytest.mark.asyncio
    async def test_valid_token(self, api):
        api._session.request.return_value = make_response(200, {
            'client_id': 'cid',
            'login': 'nowbot',
            'scopes': ['user:read:chat', 'user:write:chat'],
            'user_id': 'BOT1',
            'expires_in': 5000
        })

        assert await api.validate_token('tok') is True

        args, kwargs = api._session.request.call_args
        assert args == ('GET', 'https://id.example/oauth2/validate')
        assert kwargs['headers'] == {'Authorization': 'OAuth tok'}

    @pytest.mark.asyncio
    async def test_missing_scope_is_invalid(self, api):
        """Test that a token lacking user:write:chat is rejected."""
        api._session.request.return_value = make_response(200, {'scopes': ['user:read:chat']})

        assert await api.validate_token('tok', ['user:read:chat', 'user:write:chat']) is False

    @pytest.mark.asyncio
    async def test_explicit_scopes_override_defaults(self, api):
        api._session.request.return_value = make_response(200, {'scopes': ['user:read:chat']})

        assert await api.validate_token('tok', ['user:read:chat']) is True

    @pytest.mark.asyncio
    async def test_rejected_token(self, api):
        api._session.request.return_value = make_response(401, {'status': 401, 'message': 'invalid access token'})

        assert await api.validate_token('tok') is False

    @pytest.mark.asyncio
    async def test_unparsable_body(self, api):
        api._session.request.return_value = make_response(200)

        assert await api.validate_token('tok') is False

    @pytest.mark.asyncio
    async def test_network_failure(self, api):
        api._session.request.side_effect = requests.exceptions.Timeout()

        assert await api.validate_token('tok') is False


class TestSendChatMessage:
    """Test sending chat messages."""

    @pytest.mark.asyncio
    async def test_send_reply(self, api):
        api._session.request.return_value = make_response(200, {
            'data': [{'message_id': 'm2', 'is_sent': True}]
        })

        sent = await api.send_chat_message('B1', 'BOT1', 'Artist - Song', 'tok', 'cid', reply_to_message_id='m1')

        assert sent is True
        args, kwargs = api._session.request.call_args
        assert args == ('POST', 'https://api.example/helix/chat/messages')
        assert kwargs['json'] == {
            'broadcaster_id': 'B1',
            'sender_id': 'BOT1',
            'message': 'Artist - Song',
            'reply_parent_message_id': 'm1'
        }

    @pytest.mark.asyncio
    async def test_send_without_reply(self, api):
        api._session.request.return_value = make_response(200, {'data': [{'is_sent': True}]})

        await api.send_chat_message('B1', 'BOT1', 'hello', 'tok', 'cid')

        assert 'reply_parent_message_id' not in api._session.request.call_args.kwargs['json']

    @pytest.mark.asyncio
    async def test_dropped_message(self, api):
        api._session.request.return_value = make_response(200, {
            'data': [{'message_id': '', 'is_sent': False, 'drop_reason': {'code': 'msg_duplicate', 'message': 'duplicate'}}]
        })

        assert await api.send_chat_message('B1', 'BOT1', 'hello', 'tok', 'cid') is False

    @pytest.mark.asyncio
    async def test_send_unauthorized(self, api):
        api._session.request.return_value = make_response(401, {'status': 401})

        with pytest.raises(AuthenticationFailedError):
            await api.send_chat_message('B1', 'BOT1', 'hello', 'tok', 'cid')


class TestEventSubSubscription:
    """Test EventSub subscription creation."""

    @pytest.mark.asyncio
    async def test_create_subscription(self, api):
        api._session.request.return_value = make_response(202, {'data': [{'id': 'sub1', 'status': 'enabled'}]})

        body = await api.create_event_stream_subscription('S1', 'B1', 'BOT1', 'tok', 'cid')

        assert body['data'][0]['id'] == 'sub1'
        args, kwargs = api._session.request.call_args
        assert args == ('POST', 'https://api.example/helix/eventsub/subscriptions')
        assert kwargs['json'] == {
            'type': CHAT_MESSAGE_SUBSCRIPTION,
            'version': '1',
            'condition': {'broadcaster_user_id': 'B1', 'user_id': 'BOT1'},
            'transport': {'method': 'websocket', 'session_id': 'S1'}
        }

    @pytest.mark.asyncio
    async def test_create_subscription_refused(self, api):
        api._session.request.return_value = make_response(400, {'status': 400}, text='bad request')

        with pytest.raises(PlatformHTTPError) as exc_info:
            await api.create_event_stream_subscription('S1', 'B1', 'BOT1', 'tok', 'cid')

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_create_subscription_unauthorized(self, api):
        api._session.request.return_value = make_response(401, {'status': 401})

        with pytest.raises(AuthenticationFailedError):
            await api.create_event_stream_subscription('S1', 'B1', 'BOT1', 'tok', 'cid')
