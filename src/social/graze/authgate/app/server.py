import asyncio
import contextlib
import logging
from time import time
from typing import Dict, Optional
import aioboto3
import aiohttp
from aiohttp import web
from botocore import UNSIGNED
from botocore.config import Config as BotoConfig
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.authgate.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    OrchestratorAppKey,
    RateLimiterAppKey,
    RateLimitSweepTaskAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
)
from social.graze.authgate.app.handlers.auth import handle_admin_auth, handle_auth
from social.graze.authgate.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from social.graze.authgate.app.metrics import create_metrics_client
from social.graze.authgate.app.ratelimit import RateLimiter
from social.graze.authgate.app.tasks import rate_limit_sweep_task, tick_health_task
from social.graze.authgate.auth.orchestrator import AuthOrchestrator
from social.graze.authgate.identity.cognito import CognitoIdentityProvider
from social.graze.authgate.identity.provider import Audience, IdentityProvider
from social.graze.authgate.identity.secondary import (
    DisabledSecondaryCredentialAcquirer,
    FormLoginCredentialAcquirer,
    SecondaryCredentialAcquirer,
)
from social.graze.authgate.model.health import HealthGauge
from social.graze.authgate.store.audit import AuditLog, DatabaseAuditLog, MemoryAuditLog
from social.graze.authgate.store.sessions import (
    DatabaseSessionStore,
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
)

logger = logging.getLogger(__name__)


def build_identity_providers(
    settings: Settings, cognito_client
) -> Dict[Audience, IdentityProvider]:
    """
    One Cognito adapter per audience whose app client is configured.

    Requests for an audience without an adapter are answered with 503.
    """
    providers: Dict[Audience, IdentityProvider] = {}

    if settings.cognito_client_id:
        providers[Audience.STANDARD] = CognitoIdentityProvider(
            cognito_client,
            client_id=settings.cognito_client_id,
            client_secret=settings.cognito_client_secret,
        )
    else:
        logger.warning("COGNITO_CLIENT_ID is not set, /auth is disabled")

    if settings.cognito_client_id_admin:
        providers[Audience.PRIVILEGED] = CognitoIdentityProvider(
            cognito_client,
            client_id=settings.cognito_client_id_admin,
            client_secret=settings.cognito_client_secret_admin,
        )
    else:
        logger.warning("COGNITO_CLIENT_ID_ADMIN is not set, /admin/auth is disabled")

    return providers


def build_secondary_acquirer(
    settings: Settings, http_session: aiohttp.ClientSession
) -> SecondaryCredentialAcquirer:
    if settings.secondary_login_url is None:
        return DisabledSecondaryCredentialAcquirer()

    return FormLoginCredentialAcquirer(
        http_session,
        login_url=settings.secondary_login_url,
        cookie_name=settings.secondary_cookie_name,
        origin=settings.secondary_origin,
    )


def build_session_store(app: web.Application) -> SessionStore:
    settings = app[SettingsAppKey]

    if settings.session_store == "redis":
        return RedisSessionStore(app[RedisClientAppKey])

    if settings.session_store == "database":
        return DatabaseSessionStore(app[DatabaseSessionMakerAppKey])

    logger.warning("Using the in-memory session store, sessions are lost on restart")
    return MemorySessionStore()


def build_audit_log(app: web.Application) -> AuditLog:
    settings = app[SettingsAppKey]

    if settings.audit_log == "database":
        return DatabaseAuditLog(app[DatabaseSessionMakerAppKey])

    logger.warning("Using the in-memory audit log, login attempts are not persisted")
    return MemoryAuditLog()


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    if settings.session_store == "database" or settings.audit_log == "database":
        engine = create_async_engine(str(settings.pg_dsn))
        app[DatabaseAppKey] = engine
        database_session = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        app[DatabaseSessionMakerAppKey] = database_session

    trace_config = aiohttp.TraceConfig()

    if settings.debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logging.info("Starting request: %s %s", params.method, params.url)

        async def on_request_end(
            session, trace_config_ctx, params: aiohttp.TraceRequestEndParams
        ):
            logging.info(
                "Ending request: %s %s %s",
                params.method,
                params.url,
                params.response.status,
            )

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    timeout = aiohttp.ClientTimeout(total=settings.secondary_timeout_seconds)
    app[SessionAppKey] = aiohttp.ClientSession(
        timeout=timeout, trace_configs=[trace_config]
    )

    if settings.session_store == "redis":
        app[RedisClientAppKey] = redis.Redis.from_url(str(settings.redis_dsn))

    # The user pool auth operations are public, so requests go out unsigned.
    cognito_clients = contextlib.AsyncExitStack()
    cognito_client = await cognito_clients.enter_async_context(
        aioboto3.Session().client(
            "cognito-idp",
            region_name=settings.aws_region,
            endpoint_url=settings.cognito_endpoint,
            config=BotoConfig(
                signature_version=UNSIGNED,
                connect_timeout=settings.provider_timeout_seconds,
                read_timeout=settings.provider_timeout_seconds,
                retries={"mode": "standard", "max_attempts": 1},
            ),
        )
    )

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    app[RateLimiterAppKey] = RateLimiter(
        max_attempts=settings.rate_limit_max_attempts,
        window_seconds=settings.rate_limit_window_seconds,
    )

    app[OrchestratorAppKey] = AuthOrchestrator(
        providers=build_identity_providers(settings, cognito_client),
        session_store=build_session_store(app),
        audit_log=build_audit_log(app),
        secondary_acquirer=build_secondary_acquirer(settings, app[SessionAppKey]),
        metrics_client=metrics_client,
        health_gauge=app[HealthGaugeAppKey],
        grace_period_seconds=settings.session_grace_period_seconds,
        rotate_refresh_tokens=settings.rotate_refresh_tokens,
        provider_timeout_seconds=settings.provider_timeout_seconds,
        secondary_timeout_seconds=settings.secondary_timeout_seconds,
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[RateLimitSweepTaskAppKey] = asyncio.create_task(rate_limit_sweep_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[RateLimitSweepTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[RateLimitSweepTaskAppKey]

    # Provider calls whose clients went away still get their sessions written.
    await app[OrchestratorAppKey].close()
    await cognito_clients.aclose()

    if DatabaseAppKey in app:
        await app[DatabaseAppKey].dispose()
    if RedisClientAppKey in app:
        await app[RedisClientAppKey].aclose()
    await app[SessionAppKey].close()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def metrics_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "authgate.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "authgate.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "authgate.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def setup_routes(app: web.Application) -> None:
    app.add_routes(
        [
            web.post("/auth", handle_auth),
            web.post("/admin/auth", handle_admin_auth),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(middlewares=[metrics_middleware, sentry_middleware])

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    setup_routes(app)

    app.cleanup_ctx.append(background_tasks)

    return app
