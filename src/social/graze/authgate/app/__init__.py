"""
AuthGate Application Layer

This package implements the web application layer for the AuthGate service, handling HTTP
requests and responses using the aiohttp framework.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration, middleware setup and component lifecycle
- config.py: Configuration management using Pydantic settings
- ratelimit.py: Per-client fixed-window rate limiter guarding the login routes
- metrics.py: Metrics client abstraction (Telegraf/StatsD or no-op)
- handlers/: Request handlers for the login and internal endpoints
- tasks.py: Background tasks for health decay and rate limit window sweeping

The application uses two middleware layers:
- Metrics middleware for request counts and timings
- Sentry middleware for error reporting

It provides the following endpoints:
- POST /auth: Login against the standard user pool
- POST /admin/auth: Login against the privileged user pool
- GET /internal/alive, GET /internal/ready: Liveness and readiness probes
"""
