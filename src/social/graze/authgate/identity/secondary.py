"""
Secondary credential acquirers.

A secondary credential is an unrelated bearer token from a downstream system,
fetched with the same identity and secret after the primary authentication
succeeds. It is strictly best effort: `fetch` returns `None` on any failure and
logs why, it never raises into the authentication flow.
"""

from abc import ABC, abstractmethod
import logging
import re
from typing import Optional

import aiohttp
from aiohttp import ClientSession, hdrs

from social.graze.authgate.auth.identities import mask_identity

logger = logging.getLogger(__name__)

BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


class SecondaryCredentialError(Exception):
    pass


class SecondaryCredentialAcquirer(ABC):
    @abstractmethod
    async def fetch(self, identity: str, secret: str) -> Optional[str]:
        pass


class DisabledSecondaryCredentialAcquirer(SecondaryCredentialAcquirer):
    """Used when no secondary login endpoint is configured."""

    async def fetch(self, identity: str, secret: str) -> Optional[str]:
        return None


class FormLoginCredentialAcquirer(SecondaryCredentialAcquirer):
    """
    Obtain a token by submitting a login form to a downstream system.

    The form is posted as `application/x-www-form-urlencoded` with `user` and
    `password` fields and redirects are not followed. The login succeeds with
    either 204 or 302; the token is read from the `Authorization` response
    header (without its `Bearer` prefix) or, failing that, from the
    `cookie_name` cookie.
    """

    ACCEPTED_STATUSES = frozenset({204, 302})

    def __init__(
        self,
        http_session: ClientSession,
        login_url: str,
        cookie_name: str = "auth-token-accountancy",
        origin: Optional[str] = None,
    ) -> None:
        self.http_session = http_session
        self.login_url = login_url
        self.cookie_name = cookie_name
        self.origin = origin

    async def fetch(self, identity: str, secret: str) -> Optional[str]:
        try:
            token = await self._login(identity, secret)
        except (aiohttp.ClientError, SecondaryCredentialError, ValueError) as e:
            logger.warning(
                "Secondary credential unavailable for %s: %s: %s",
                mask_identity(identity),
                type(e).__name__,
                e,
            )
            return None
        except Exception:
            logger.exception(
                "Unexpected error fetching secondary credential for %s",
                mask_identity(identity),
            )
            return None

        logger.info("Secondary credential obtained for %s", mask_identity(identity))
        return token

    async def _login(self, identity: str, secret: str) -> str:
        headers = {hdrs.ACCEPT: "application/json"}
        if self.origin is not None:
            headers[hdrs.ORIGIN] = self.origin
            headers[hdrs.REFERER] = f"{self.origin}/"

        async with self.http_session.post(
            self.login_url,
            data={"user": identity, "password": secret},
            headers=headers,
            allow_redirects=False,
        ) as response:
            if response.status not in self.ACCEPTED_STATUSES:
                raise SecondaryCredentialError(f"unexpected status {response.status}")

            authorization = response.headers.get(hdrs.AUTHORIZATION)
            if authorization:
                token = BEARER_PREFIX.sub("", authorization).strip()
                if token:
                    return token

            cookie = response.cookies.get(self.cookie_name)
            if cookie is not None and cookie.value:
                return cookie.value

        raise SecondaryCredentialError("no token in response")
