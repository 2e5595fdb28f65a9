from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Audience(str, Enum):
    """Which identity provider pool a request authenticates against."""

    STANDARD = "standard"
    PRIVILEGED = "privileged"


@dataclass(frozen=True)
class Tokens:
    access_token: str
    id_token: str
    # Refresh responses usually omit it.
    refresh_token: Optional[str]
    expires_in_seconds: int


@dataclass(frozen=True)
class Success:
    tokens: Tokens


@dataclass(frozen=True)
class SecondFactorRequired:
    challenge: str = "SOFTWARE_TOKEN_MFA"


@dataclass(frozen=True)
class Failure:
    reason: str


AuthOutcome = Union[Success, SecondFactorRequired, Failure]
SecondFactorOutcome = Union[Success, Failure]
RefreshOutcome = Union[Success, Failure]


class ProviderUnavailable(Exception):
    """The identity provider could not be reached or answered with a server error."""


class IdentityProvider(ABC):
    """
    Uniform contract over a password + second-factor identity provider.

    Each operation returns a tagged result instead of raising for credential
    problems. Only provider unavailability raises (`ProviderUnavailable`).
    """

    @abstractmethod
    async def authenticate(self, identity: str, secret: str) -> AuthOutcome:
        """
        Verify a password.

        Returns `SecondFactorRequired` when the account has a second factor
        enrolled; the caller then has to follow up with `verify_second_factor`
        for the same identity.
        """

    @abstractmethod
    async def verify_second_factor(
        self, identity: str, code: str
    ) -> SecondFactorOutcome:
        """Answer the second-factor challenge issued by the last `authenticate` call."""

    @abstractmethod
    async def refresh_session(
        self, identity: str, refresh_token: str
    ) -> RefreshOutcome:
        """Exchange a refresh token for new access and id tokens."""
