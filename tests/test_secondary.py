"""
Tests for secondary credential acquirers.
"""

import aiohttp
import pytest

from social.graze.authgate.identity.secondary import (
    DisabledSecondaryCredentialAcquirer,
    FormLoginCredentialAcquirer,
)

from test_helpers import FakeClientSession, create_mock_response

LOGIN_URL = "https://accounts.example.com/login"
IDENTITY = "u@x.com"
SECRET = "hunter22"


def make_acquirer(session, **kwargs):
    return FormLoginCredentialAcquirer(session, login_url=LOGIN_URL, **kwargs)


class TestDisabled:
    @pytest.mark.asyncio
    async def test_always_none(self):
        acquirer = DisabledSecondaryCredentialAcquirer()
        assert await acquirer.fetch(IDENTITY, SECRET) is None


class TestFormLogin:
    @pytest.mark.asyncio
    async def test_token_from_authorization_header(self):
        session = FakeClientSession(
            create_mock_response(status=204, headers={"Authorization": "Bearer tok-1"})
        )

        token = await make_acquirer(session).fetch(IDENTITY, SECRET)

        assert token == "tok-1"
        url, kwargs = session.requests[0]
        assert url == LOGIN_URL
        assert kwargs["data"] == {"user": IDENTITY, "password": SECRET}
        assert kwargs["allow_redirects"] is False

    @pytest.mark.asyncio
    async def test_token_from_cookie(self):
        session = FakeClientSession(
            create_mock_response(
                status=302, cookies={"auth-token-accountancy": "cookie-tok"}
            )
        )

        token = await make_acquirer(session).fetch(IDENTITY, SECRET)

        assert token == "cookie-tok"

    @pytest.mark.asyncio
    async def test_custom_cookie_name(self):
        session = FakeClientSession(
            create_mock_response(status=204, cookies={"session": "cookie-tok"})
        )

        token = await make_acquirer(session, cookie_name="session").fetch(
            IDENTITY, SECRET
        )

        assert token == "cookie-tok"

    @pytest.mark.asyncio
    async def test_origin_headers(self):
        session = FakeClientSession(
            create_mock_response(status=204, headers={"Authorization": "tok-2"})
        )

        token = await make_acquirer(
            session, origin="https://accounts.example.com"
        ).fetch(IDENTITY, SECRET)

        assert token == "tok-2"
        assert session.header("Origin") == "https://accounts.example.com"
        assert session.header("Referer") == "https://accounts.example.com/"

    @pytest.mark.asyncio
    async def test_rejected_login(self):
        session = FakeClientSession(create_mock_response(status=401))

        assert await make_acquirer(session).fetch(IDENTITY, SECRET) is None

    @pytest.mark.asyncio
    async def test_no_token_in_response(self):
        session = FakeClientSession(create_mock_response(status=204))

        assert await make_acquirer(session).fetch(IDENTITY, SECRET) is None

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeClientSession(aiohttp.ClientConnectionError("refused"))

        assert await make_acquirer(session).fetch(IDENTITY, SECRET) is None

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        session = FakeClientSession(RuntimeError("boom"))

        assert await make_acquirer(session).fetch(IDENTITY, SECRET) is None
