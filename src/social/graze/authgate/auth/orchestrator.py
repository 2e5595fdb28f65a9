"""
Authentication Session Orchestrator

Decides, per login request, between three paths:

1. Cache hit: a stored session whose access token outlives the grace period is
   returned verbatim, without contacting the identity provider or writing an
   audit entry.
2. Refresh: a stale session with a refresh token is refreshed. A rejected
   refresh falls through to a full authentication when the caller supplied a
   secret, and fails with `RefreshFailedError` otherwise.
3. Full authentication: the secret is verified, stepping up to a second-factor
   code when the provider asks for one. Every outcome is audited.

Successful refreshes and authentications fetch the secondary credential on a
best-effort basis and write a new session record. A missing secondary
credential never fails the request; the previously cached one is kept.

Provider calls and the writes that follow them are serialized per audience and
identity. A request that arrives while another one for the same identity is in
flight waits, then re-reads the store and is served the in-flight result as a
cache hit. That sequence runs in its own task, so a client disconnecting
mid-call does not stop its result from being persisted.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Set,
    TypeVar,
    Union,
)

import sentry_sdk

from social.graze.authgate.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.authgate.auth.errors import (
    AuthenticationFailedError,
    RefreshFailedError,
    SecondFactorRequiredError,
    UpstreamUnavailableError,
)
from social.graze.authgate.auth.identities import mask_identity, normalize_identity
from social.graze.authgate.auth.locks import KeyedLock
from social.graze.authgate.identity.provider import (
    Audience,
    Failure,
    IdentityProvider,
    ProviderUnavailable,
    SecondFactorRequired,
    Success,
    Tokens,
)
from social.graze.authgate.identity.secondary import SecondaryCredentialAcquirer
from social.graze.authgate.model.health import HealthGauge
from social.graze.authgate.store.audit import AuditLog, LoginAttempt
from social.graze.authgate.store.errors import StoreError
from social.graze.authgate.store.sessions import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_CACHE = "cache"
SOURCE_REFRESH = "refresh"
SOURCE_AUTHENTICATE = "authenticate"


@dataclass(frozen=True)
class SessionResult:
    """
    Successful outcome of `AuthOrchestrator.handle_auth`.

    `source` tells which path produced it: "cache", "refresh" or "authenticate".
    """

    access_token: str
    id_token: str
    refresh_token: Optional[str]
    secondary_token: Optional[str]
    expires_at: int
    source: str

    @staticmethod
    def from_record(record: SessionRecord, source: str) -> "SessionResult":
        return SessionResult(
            access_token=record.access_token,
            id_token=record.id_token,
            refresh_token=record.refresh_token,
            secondary_token=record.secondary_token,
            expires_at=record.expires_at,
            source=source,
        )

    def to_response_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "accessToken": self.access_token,
            "idToken": self.id_token,
            "refreshToken": self.refresh_token,
        }
        if self.secondary_token is not None:
            body["secondaryToken"] = self.secondary_token
        return body


class AuthOrchestrator:
    def __init__(
        self,
        providers: Mapping[Audience, IdentityProvider],
        session_store: SessionStore,
        audit_log: AuditLog,
        secondary_acquirer: SecondaryCredentialAcquirer,
        metrics_client: Optional[MetricsClient] = None,
        health_gauge: Optional[HealthGauge] = None,
        grace_period_seconds: float = 60,
        rotate_refresh_tokens: bool = False,
        provider_timeout_seconds: float = 10,
        secondary_timeout_seconds: float = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            providers: Identity provider adapter for each configured audience
            session_store: Where sessions are cached
            audit_log: Where full authentication attempts are recorded
            secondary_acquirer: Best-effort secondary credential source
            metrics_client: Receives `authgate.auth.outcome` counters
            health_gauge: Bumped whenever the store or provider is unreachable
            grace_period_seconds: Safety margin subtracted from token expiry
            rotate_refresh_tokens: Store the refresh token returned by a refresh
                instead of keeping the stored one
            provider_timeout_seconds: Per-call timeout for provider operations
            secondary_timeout_seconds: Timeout for the secondary credential fetch
            clock: Source of epoch seconds
        """
        self.providers = dict(providers)
        self.session_store = session_store
        self.audit_log = audit_log
        self.secondary_acquirer = secondary_acquirer
        self.metrics_client = metrics_client or NoOpMetricsClient()
        self.health_gauge = health_gauge
        self.grace_period_seconds = grace_period_seconds
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.provider_timeout_seconds = provider_timeout_seconds
        self.secondary_timeout_seconds = secondary_timeout_seconds
        self._clock = clock
        self._locks = KeyedLock()
        self._in_flight: Set[asyncio.Task] = set()

    async def handle_auth(
        self,
        identity: str,
        secret: Optional[str],
        second_factor_code: Optional[str],
        client_address: str,
        audience: Union[Audience, str] = Audience.STANDARD,
    ) -> SessionResult:
        """
        Produce a session for `identity`, from cache when possible.

        Raises:
            SecondFactorRequiredError: The provider wants a one-time code and none was given
            AuthenticationFailedError: Credentials or second-factor code were rejected
            RefreshFailedError: Refresh was rejected and no secret was given
            UpstreamUnavailableError: The session store or identity provider is unreachable
        """
        identity = normalize_identity(identity)
        audience = Audience(audience)

        provider = self.providers.get(audience)
        if provider is None:
            raise UpstreamUnavailableError.audience_not_configured(audience.value)

        record = await self._read(audience, identity)
        if record is not None and self._is_fresh(record):
            logger.debug("Serving cached session for %s", mask_identity(identity))
            self._count(audience, SOURCE_CACHE, "success")
            return SessionResult.from_record(record, SOURCE_CACHE)

        task = asyncio.ensure_future(
            self._handle_serialized(
                provider,
                audience,
                identity,
                secret,
                second_factor_code,
                client_address,
            )
        )
        self._in_flight.add(task)
        task.add_done_callback(self._forget)

        return await asyncio.shield(task)

    async def close(self) -> None:
        """Wait for provider calls that outlived their requests to be persisted."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def _forget(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        # Callers re-raise the error themselves; this only marks it retrieved
        # for requests that were cancelled while the task ran.
        if not task.cancelled():
            task.exception()

    async def _handle_serialized(
        self,
        provider: IdentityProvider,
        audience: Audience,
        identity: str,
        secret: Optional[str],
        second_factor_code: Optional[str],
        client_address: str,
    ) -> SessionResult:
        async with self._locks.hold((audience, identity)):
            record = await self._read(audience, identity)
            if record is not None and self._is_fresh(record):
                self._count(audience, SOURCE_CACHE, "success")
                return SessionResult.from_record(record, SOURCE_CACHE)

            if record is not None and record.refresh_token:
                result = await self._refresh(
                    provider, audience, record, record.refresh_token, secret
                )
                if result is not None:
                    return result

            if secret is None:
                raise AuthenticationFailedError.secret_missing()

            return await self._authenticate(
                provider,
                audience,
                identity,
                secret,
                second_factor_code,
                client_address,
                record,
            )

    async def _refresh(
        self,
        provider: IdentityProvider,
        audience: Audience,
        record: SessionRecord,
        refresh_token: str,
        secret: Optional[str],
    ) -> Optional[SessionResult]:
        """
        Refresh `record` using `refresh_token`. Returns None when the caller
        should fall back to a full authentication.
        """
        identity = record.identity

        outcome = await self._call_provider(
            "refresh_session", provider.refresh_session(identity, refresh_token)
        )

        if not isinstance(outcome, Success):
            reason = outcome.reason if isinstance(outcome, Failure) else repr(outcome)
            self._count(audience, SOURCE_REFRESH, "failure")
            if secret is None:
                logger.warning(
                    "Session refresh failed for %s without a secret to retry: %s",
                    mask_identity(identity),
                    reason,
                )
                raise RefreshFailedError(reason)

            logger.warning(
                "Session refresh failed for %s, falling back to full authentication: %s",
                mask_identity(identity),
                reason,
            )
            return None

        tokens = outcome.tokens
        if self.rotate_refresh_tokens and tokens.refresh_token:
            refresh_token = tokens.refresh_token

        secondary_token = None
        if secret is not None:
            secondary_token = await self._fetch_secondary(identity, secret)

        refreshed = SessionRecord(
            identity=identity,
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            refresh_token=refresh_token,
            expires_at=self._expires_at(tokens),
            secondary_token=secondary_token or record.secondary_token,
        )
        await self._write(audience, refreshed)

        logger.info(
            "Session refreshed for %s (secondary token: %s)",
            mask_identity(identity),
            refreshed.secondary_token is not None,
        )
        self._count(audience, SOURCE_REFRESH, "success")
        return SessionResult.from_record(refreshed, SOURCE_REFRESH)

    async def _authenticate(
        self,
        provider: IdentityProvider,
        audience: Audience,
        identity: str,
        secret: str,
        second_factor_code: Optional[str],
        client_address: str,
        previous: Optional[SessionRecord],
    ) -> SessionResult:
        second_factor_provided = bool(second_factor_code)

        outcome = await self._call_provider(
            "authenticate", provider.authenticate(identity, secret)
        )

        if isinstance(outcome, SecondFactorRequired):
            if not second_factor_code:
                await self._audit(audience, identity, False, client_address, False)
                logger.warning(
                    "Second factor required but not provided for %s",
                    mask_identity(identity),
                )
                self._count(audience, SOURCE_AUTHENTICATE, "second_factor_required")
                raise SecondFactorRequiredError()

            outcome = await self._call_provider(
                "verify_second_factor",
                provider.verify_second_factor(identity, second_factor_code),
            )

        if not isinstance(outcome, Success):
            reason = outcome.reason if isinstance(outcome, Failure) else repr(outcome)
            await self._audit(
                audience, identity, False, client_address, second_factor_provided
            )
            logger.warning(
                "Authentication failed for %s from %s: %s",
                mask_identity(identity),
                client_address,
                reason,
            )
            self._count(audience, SOURCE_AUTHENTICATE, "failure")
            raise AuthenticationFailedError(reason)

        await self._audit(
            audience, identity, True, client_address, second_factor_provided
        )

        tokens = outcome.tokens
        secondary_token = await self._fetch_secondary(identity, secret)
        if secondary_token is None and previous is not None:
            secondary_token = previous.secondary_token

        authenticated = SessionRecord(
            identity=identity,
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            refresh_token=tokens.refresh_token,
            expires_at=self._expires_at(tokens),
            secondary_token=secondary_token,
        )
        await self._write(audience, authenticated)

        logger.info(
            "Authenticated %s (%s) from %s (secondary token: %s)",
            mask_identity(identity),
            audience.value,
            client_address,
            authenticated.secondary_token is not None,
        )
        self._count(audience, SOURCE_AUTHENTICATE, "success")
        return SessionResult.from_record(authenticated, SOURCE_AUTHENTICATE)

    async def _call_provider(self, operation: str, call: Awaitable[T]) -> Union[T, Failure]:
        try:
            return await asyncio.wait_for(call, timeout=self.provider_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Identity provider %s timed out after %ss",
                operation,
                self.provider_timeout_seconds,
            )
            return Failure("timeout")
        except ProviderUnavailable as e:
            sentry_sdk.capture_exception(e)
            logger.error("Identity provider %s unavailable: %s", operation, e)
            await self._womp()
            raise UpstreamUnavailableError.provider(str(e)) from e

    async def _fetch_secondary(self, identity: str, secret: str) -> Optional[str]:
        try:
            return await asyncio.wait_for(
                self.secondary_acquirer.fetch(identity, secret),
                timeout=self.secondary_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Secondary credential fetch timed out for %s", mask_identity(identity)
            )
        except Exception:
            logger.exception(
                "Secondary credential acquirer raised for %s", mask_identity(identity)
            )
        return None

    async def _read(self, audience: Audience, identity: str) -> Optional[SessionRecord]:
        try:
            return await self.session_store.get(audience.value, identity)
        except StoreError as e:
            sentry_sdk.capture_exception(e)
            logger.error("Session store read failed: %s", e)
            await self._womp()
            raise UpstreamUnavailableError.store(str(e)) from e

    async def _write(self, audience: Audience, record: SessionRecord) -> None:
        try:
            await self.session_store.put(audience.value, record)
        except StoreError as e:
            sentry_sdk.capture_exception(e)
            logger.error("Session store write failed: %s", e)
            await self._womp()
            raise UpstreamUnavailableError.store(str(e)) from e

    async def _audit(
        self,
        audience: Audience,
        identity: str,
        success: bool,
        client_address: str,
        second_factor_provided: bool,
    ) -> None:
        attempt = LoginAttempt(
            identity=identity,
            timestamp=datetime.fromtimestamp(self._clock(), timezone.utc),
            success=success,
            client_address=client_address,
            second_factor_provided=second_factor_provided,
            audience=audience.value,
        )
        try:
            await self.audit_log.append(attempt)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to record %s", attempt)
            await self._womp()

    def _is_fresh(self, record: SessionRecord) -> bool:
        return record.is_fresh(self._clock(), self.grace_period_seconds)

    def _expires_at(self, tokens: Tokens) -> int:
        return int(self._clock()) + tokens.expires_in_seconds

    def _count(self, audience: Audience, path: str, outcome: str) -> None:
        self.metrics_client.increment(
            "authgate.auth.outcome",
            1,
            tag_dict={"audience": audience.value, "path": path, "outcome": outcome},
        )

    async def _womp(self) -> None:
        if self.health_gauge is not None:
            await self.health_gauge.womp()
