"""
Authentication error taxonomy.

Every failure that reaches a client is one of the `AuthError` subclasses below.
Each carries a stable `error_code` and HTTP `status_code` so that client code can
branch on step-up vs. hard failure vs. retry-later. The message exposed to
clients is `public_message`; the exception's own message is meant for logs.
"""

from typing import Any, Dict, List, Optional


class AuthError(Exception):
    """Base class for errors surfaced to the caller of the authentication flow."""

    status_code: int = 500
    error_code: str = "internal_error"
    public_message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)

    def to_response_body(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.public_message,
            "code": self.error_code,
        }


class InvalidRequestError(AuthError):
    """Malformed identity, secret or second-factor code. Raised at the boundary only."""

    status_code = 400
    error_code = "validation_error"
    public_message = "Invalid input"

    def __init__(self, details: Optional[List[str]] = None) -> None:
        self.details = list(details or [])
        super().__init__(f"invalid request: {', '.join(self.details)}")

    def to_response_body(self) -> Dict[str, Any]:
        body = super().to_response_body()
        if self.details:
            body["details"] = self.details
        return body

    @staticmethod
    def invalid_json() -> "InvalidRequestError":
        return InvalidRequestError(["request body must be a JSON object"])


class RateLimitedError(AuthError):
    """Too many attempts from one client address in the current window."""

    status_code = 429
    error_code = "rate_limited"
    public_message = "Too many attempts. Try again shortly."

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"rate limited, retry after {retry_after_seconds}s")

    def to_response_body(self) -> Dict[str, Any]:
        body = super().to_response_body()
        body["retryAfter"] = self.retry_after_seconds
        return body


class SecondFactorRequiredError(AuthError):
    """The provider asked for a one-time code and the caller did not supply one."""

    status_code = 401
    error_code = "second_factor_required"
    public_message = "A second-factor code is required."


class AuthenticationFailedError(AuthError):
    """
    The provider rejected the credentials or the second-factor code.

    The provider's reason is kept on `reason` for logging and is never echoed
    to the client, so the response cannot be used to probe which part of the
    credentials was wrong.
    """

    status_code = 401
    error_code = "authentication_failed"
    public_message = "Authentication failed."

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"authentication failed: {reason}")

    @staticmethod
    def secret_missing() -> "AuthenticationFailedError":
        return AuthenticationFailedError("no secret available for authentication")


class RefreshFailedError(AuthError):
    """A refresh was rejected and there is no secret to retry a full authentication with."""

    status_code = 401
    error_code = "refresh_failed"
    public_message = "Session refresh failed. Credentials are required."

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"refresh failed: {reason}")


class UpstreamUnavailableError(AuthError):
    """The session store or the identity provider could not be reached."""

    status_code = 503
    error_code = "upstream_unavailable"
    public_message = "Authentication service temporarily unavailable."

    @staticmethod
    def store(msg: str = "") -> "UpstreamUnavailableError":
        return UpstreamUnavailableError(f"session store unavailable: {msg}")

    @staticmethod
    def provider(msg: str = "") -> "UpstreamUnavailableError":
        return UpstreamUnavailableError(f"identity provider unavailable: {msg}")

    @staticmethod
    def audience_not_configured(audience: str) -> "UpstreamUnavailableError":
        return UpstreamUnavailableError(
            f"no identity provider configured for audience {audience}"
        )
