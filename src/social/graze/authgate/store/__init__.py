"""
Session and Audit Storage

- sessions.py: `SessionStore` contract with in-memory, Redis and PostgreSQL backends
- audit.py: `AuditLog` contract with in-memory and PostgreSQL backends

Backends raise `StoreError` when their storage cannot be reached. The
orchestrator turns that into `UpstreamUnavailableError` for session reads and
writes, and only logs it for audit appends.
"""
