"""
Identity Provider Integration

This package wraps the external services the orchestrator authenticates against.

Key Components:
- provider.py: The `IdentityProvider` contract and its tagged results
  (`Success`, `SecondFactorRequired`, `Failure`)
- cognito.py: AWS Cognito user pool adapter over an aioboto3 `cognito-idp` client
- secondary.py: Best-effort secondary credential acquirers

Adapters never retry and never interpret failures; retry and fallback policy
belongs to the orchestrator. A provider that cannot be reached raises
`ProviderUnavailable`, which is kept distinct from a credential `Failure`.
"""
