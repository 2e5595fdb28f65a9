"""
AuthGate - Authentication Session Gateway

This package implements a session-caching gateway in front of a password and
second-factor identity provider (an AWS Cognito user pool). Clients submit
credentials; the gateway answers from its session cache whenever it can,
refreshes sessions that are about to expire, and falls back to a full
authentication when a refresh is rejected.

Key Components:
- app: Web application layer (aiohttp) with request handlers, rate limiting and
  server configuration
- auth: The authentication orchestrator and its error taxonomy
- identity: Identity provider adapters and the secondary credential acquirer
- model: Database models for cached sessions and the login audit trail
- store: Session store and audit log implementations (memory, Redis, PostgreSQL)

Request Flow:
1. The rate limiter admits or rejects the client address
2. The request body is validated and the identity normalized
3. The orchestrator serves a cached session, refreshes it, or authenticates
   with the identity provider (stepping up to a second factor when asked)
4. Successful sessions are written back to the session store, a secondary
   credential is fetched on a best-effort basis, and full authentications
   are recorded in the audit log

Identity provider calls for the same identity are serialized, so concurrent
double-submits wait for the in-flight result instead of issuing duplicate
provider calls.
"""
