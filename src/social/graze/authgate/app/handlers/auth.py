import json
import logging
import re
from typing import Any, Optional
from aiohttp import web
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError
import sentry_sdk

from social.graze.authgate.app.config import (
    MetricsClientAppKey,
    OrchestratorAppKey,
    RateLimiterAppKey,
    SettingsAppKey,
)
from social.graze.authgate.app.ratelimit import Rejected
from social.graze.authgate.auth.errors import (
    AuthError,
    InvalidRequestError,
    RateLimitedError,
)
from social.graze.authgate.auth.identities import mask_identity
from social.graze.authgate.identity.provider import Audience


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OTP_PATTERN = re.compile(r"^\d{6}$")
MIN_PASSWORD_LENGTH = 6


class AuthRequest(BaseModel):
    """
    Body of `POST /auth` and `POST /admin/auth`.

    Every field is checked even when an earlier one fails so that the client
    gets all problems in one response.
    """

    email: str = Field(default=None, validate_default=True)  # type: ignore
    password: str = Field(default=None, validate_default=True)  # type: ignore
    otp: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def email_check(cls, v: Any) -> str:
        if not isinstance(v, str) or len(v.strip()) == 0:
            raise PydanticCustomError("email_required", "email is required")

        v = v.strip()
        if EMAIL_PATTERN.match(v) is None:
            raise PydanticCustomError("email_invalid", "email is invalid")

        return v.lower()

    @field_validator("password", mode="before")
    @classmethod
    def password_check(cls, v: Any) -> str:
        if not isinstance(v, str) or len(v) == 0:
            raise PydanticCustomError("password_required", "password is required")

        if len(v) < MIN_PASSWORD_LENGTH:
            raise PydanticCustomError(
                "password_too_short",
                "password must be at least {min_length} characters",
                {"min_length": MIN_PASSWORD_LENGTH},
            )

        return v

    @field_validator("otp", mode="before")
    @classmethod
    def otp_check(cls, v: Any) -> Optional[str]:
        if v is None:
            return None

        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            raise PydanticCustomError("otp_type", "otp must be a string or a number")

        if isinstance(v, float):
            if not v.is_integer():
                raise PydanticCustomError("otp_invalid", "otp must be exactly 6 digits")
            v = int(v)

        v = str(v)
        if OTP_PATTERN.match(v) is None:
            raise PydanticCustomError("otp_invalid", "otp must be exactly 6 digits")

        return v


async def parse_auth_request(request: web.Request) -> AuthRequest:
    try:
        data = await request.read()
        payload = json.loads(data)
    except (OSError, ValueError):
        raise InvalidRequestError.invalid_json()

    if not isinstance(payload, dict):
        raise InvalidRequestError.invalid_json()

    try:
        return AuthRequest.model_validate(payload)
    except ValidationError as e:
        details = [error["msg"] for error in e.errors()]
        email = payload.get("email")
        logger.warning(
            "Auth request validation failed for %s: %s",
            mask_identity(email) if isinstance(email, str) else "-",
            details,
        )
        raise InvalidRequestError(details)


def client_address_from_request(request: web.Request, trust_forwarded_for: bool) -> str:
    """
    The address used for rate limiting and auditing.

    The first `X-Forwarded-For` entry is only honoured when the service is
    configured to sit behind a proxy that sets it.
    """
    if trust_forwarded_for:
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        first = forwarded_for.split(",")[0].strip()
        if len(first) > 0:
            return first

    if request.remote:
        return request.remote

    return "unknown"


def auth_error_response(error: AuthError) -> web.Response:
    headers = {}
    if isinstance(error, RateLimitedError):
        headers["Retry-After"] = str(error.retry_after_seconds)

    return web.json_response(
        status=error.status_code,
        data=error.to_response_body(),
        headers=headers,
    )


async def _handle_auth_for(request: web.Request, audience: Audience) -> web.Response:
    settings = request.app[SettingsAppKey]
    rate_limiter = request.app[RateLimiterAppKey]
    orchestrator = request.app[OrchestratorAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    client_address = client_address_from_request(request, settings.trust_forwarded_for)

    try:
        admission = await rate_limiter.admit(client_address)
        if isinstance(admission, Rejected):
            raise RateLimitedError(admission.retry_after_seconds)

        auth_request = await parse_auth_request(request)

        result = await orchestrator.handle_auth(
            identity=auth_request.email,
            secret=auth_request.password,
            second_factor_code=auth_request.otp,
            client_address=client_address,
            audience=audience,
        )

        await rate_limiter.reset(client_address)

        return web.json_response(result.to_response_body())
    except AuthError as e:
        metrics_client.increment(
            "authgate.auth.error",
            1,
            tag_dict={"audience": audience.value, "code": e.error_code},
        )
        return auth_error_response(e)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("handle_auth: Exception")

        body = {
            "success": False,
            "error": "Internal Server Error",
            "code": "internal_error",
        }
        if settings.debug:
            body["error_type"] = type(e).__name__

        return web.json_response(status=500, data=body)


async def handle_auth(request: web.Request) -> web.Response:
    return await _handle_auth_for(request, Audience.STANDARD)


async def handle_admin_auth(request: web.Request) -> web.Response:
    return await _handle_auth_for(request, Audience.PRIVILEGED)
