"""
AWS Cognito user pool adapter.

Talks to the Cognito Identity Provider API through an aioboto3 `cognito-idp`
client:

1. `initiate_auth` with `USER_PASSWORD_AUTH` for password verification
2. `respond_to_auth_challenge` with `SOFTWARE_TOKEN_MFA` for the one-time code step
3. `initiate_auth` with `REFRESH_TOKEN_AUTH` for session refresh

Cognito hands out an opaque `Session` string with a challenge that must be echoed
back when answering it. The adapter keeps that string per identity between the
`authenticate` and `verify_second_factor` calls; the orchestrator serializes
calls per identity, so the two cannot interleave for the same account. Cognito
only honours a challenge session for a few minutes, so entries older than
`challenge_ttl_seconds` are dropped instead of being kept for callers that never
come back with a code.
"""

import asyncio
import base64
import hashlib
import hmac
import logging
from time import time
from typing import Any, Callable, Dict, Optional, Tuple

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from social.graze.authgate.identity.provider import (
    AuthOutcome,
    Failure,
    IdentityProvider,
    ProviderUnavailable,
    RefreshOutcome,
    SecondFactorOutcome,
    SecondFactorRequired,
    Success,
    Tokens,
)

logger = logging.getLogger(__name__)

SOFTWARE_TOKEN_MFA = "SOFTWARE_TOKEN_MFA"

# Cognito's default authentication session validity.
CHALLENGE_SESSION_TTL_SECONDS = 180.0

# Error codes that mean Cognito is struggling rather than rejecting the caller.
UNAVAILABLE_ERROR_CODES = frozenset(
    {
        "InternalErrorException",
        "TooManyRequestsException",
        "ResourceNotFoundException",
    }
)


class CognitoRejection(Exception):
    """A 4xx answer from Cognito with its error code and message."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(f"{error_code}: {message}")
        self.error_code = error_code
        self.message = message


def tokens_from_result(result: Dict[str, Any]) -> Tokens:
    try:
        return Tokens(
            access_token=result["AccessToken"],
            id_token=result["IdToken"],
            refresh_token=result.get("RefreshToken"),
            expires_in_seconds=int(result.get("ExpiresIn", 3600)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ProviderUnavailable(f"malformed authentication result: {e!r}") from e


class CognitoIdentityProvider(IdentityProvider):
    def __init__(
        self,
        client: Any,
        client_id: str,
        client_secret: Optional[str] = None,
        challenge_ttl_seconds: float = CHALLENGE_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time,
    ) -> None:
        self.client = client
        self.client_id = client_id
        self.client_secret = client_secret
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self.clock = clock
        self._challenge_sessions: Dict[str, Tuple[str, float]] = {}

    def secret_hash(self, identity: str) -> Optional[str]:
        """
        Compute Cognito's `SECRET_HASH` for app clients that have a secret.

        The hash is base64(HMAC-SHA256(client_secret, identity + client_id)).
        """
        if not self.client_secret:
            return None
        digest = hmac.new(
            self.client_secret.encode("utf-8"),
            (identity + self.client_id).encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def _with_secret_hash(self, identity: str, params: Dict[str, str]) -> Dict[str, str]:
        secret_hash = self.secret_hash(identity)
        if secret_hash is not None:
            params["SECRET_HASH"] = secret_hash
        return params

    def _remember_challenge(self, identity: str, challenge_session: str) -> None:
        now = self.clock()
        expired = [
            key
            for key, (_, issued_at) in self._challenge_sessions.items()
            if now - issued_at >= self.challenge_ttl_seconds
        ]
        for key in expired:
            del self._challenge_sessions[key]

        self._challenge_sessions[identity] = (challenge_session, now)

    def _take_challenge(self, identity: str) -> Optional[str]:
        entry = self._challenge_sessions.pop(identity, None)
        if entry is None:
            return None

        challenge_session, issued_at = entry
        if self.clock() - issued_at >= self.challenge_ttl_seconds:
            return None
        return challenge_session

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        try:
            return await getattr(self.client, operation)(**kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            error_code = error.get("Code", "UnknownError")
            message = error.get("Message", "")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

            if status >= 500 or error_code in UNAVAILABLE_ERROR_CODES:
                raise ProviderUnavailable(
                    f"{operation}: {status} {error_code} {message}"
                ) from e

            raise CognitoRejection(error_code, message) from e
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise asyncio.TimeoutError(str(e)) from e
        except BotoCoreError as e:
            raise ProviderUnavailable(f"{operation}: {type(e).__name__}: {e}") from e

    async def authenticate(self, identity: str, secret: str) -> AuthOutcome:
        try:
            body = await self._call(
                "initiate_auth",
                AuthFlow="USER_PASSWORD_AUTH",
                ClientId=self.client_id,
                AuthParameters=self._with_secret_hash(
                    identity, {"USERNAME": identity, "PASSWORD": secret}
                ),
            )
        except CognitoRejection as e:
            return Failure(str(e))

        result = body.get("AuthenticationResult")
        if result is not None:
            return Success(tokens_from_result(result))

        challenge = body.get("ChallengeName")
        if challenge == SOFTWARE_TOKEN_MFA:
            self._remember_challenge(identity, body.get("Session", ""))
            return SecondFactorRequired(challenge)

        logger.warning("Unsupported Cognito challenge: %s", challenge)
        return Failure(f"unsupported challenge: {challenge}")

    async def verify_second_factor(
        self, identity: str, code: str
    ) -> SecondFactorOutcome:
        challenge_session = self._take_challenge(identity)
        if challenge_session is None:
            return Failure("no pending second-factor challenge")

        try:
            body = await self._call(
                "respond_to_auth_challenge",
                ChallengeName=SOFTWARE_TOKEN_MFA,
                ClientId=self.client_id,
                Session=challenge_session,
                ChallengeResponses=self._with_secret_hash(
                    identity, {"USERNAME": identity, "SOFTWARE_TOKEN_MFA_CODE": code}
                ),
            )
        except CognitoRejection as e:
            return Failure(str(e))

        result = body.get("AuthenticationResult")
        if result is None:
            return Failure(f"unexpected challenge: {body.get('ChallengeName')}")
        return Success(tokens_from_result(result))

    async def refresh_session(
        self, identity: str, refresh_token: str
    ) -> RefreshOutcome:
        try:
            body = await self._call(
                "initiate_auth",
                AuthFlow="REFRESH_TOKEN_AUTH",
                ClientId=self.client_id,
                AuthParameters=self._with_secret_hash(
                    identity, {"REFRESH_TOKEN": refresh_token}
                ),
            )
        except CognitoRejection as e:
            return Failure(str(e))

        result = body.get("AuthenticationResult")
        if result is None:
            return Failure("refresh returned no authentication result")
        return Success(tokens_from_result(result))
