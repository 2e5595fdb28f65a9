"""
Authentication orchestration.

- orchestrator.py: the cache, refresh and full authentication flow for one identity
- errors.py: errors carrying the HTTP status and public code they map to
- locks.py: per-key asyncio locks used to serialize work for one identity
- identities.py: identity normalization and masking for logs
"""
