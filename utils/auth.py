"""
Credential providers for the tracker and external platforms.

Token exchange (OAuth) happens elsewhere; these providers only hand out
credentials that were already obtained and configured.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from utils.config import Settings
from utils.errors import ConfigurationError, CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    scheme: str
    token: str

    @property
    def header_value(self) -> str:
        return f"{self.scheme} {self.token}"

    def __repr__(self) -> str:
        return f"Credential(scheme={self.scheme!r}, token=***)"


def basic_credential(email: str, api_token: str) -> Credential:
    """Build a Basic credential from an account email and API token."""
    raw = f"{email}:{api_token}".encode("utf-8")
    return Credential(scheme="Basic", token=base64.b64encode(raw).decode("ascii"))


class CredentialProvider(Protocol):
    async def get_credential(self) -> Credential: ...


class UserCredentialProvider(Protocol):
    async def credential_for(self, user_id: str) -> Credential: ...


class StaticCredentialProvider:
    """Returns one fixed credential."""

    def __init__(self, credential: Credential) -> None:
        self._credential = credential

    async def get_credential(self) -> Credential:
        return self._credential


class StaticUserCredentials:
    """Per-user bearer tokens with an optional shared fallback token."""

    def __init__(
        self,
        tokens: Optional[Mapping[str, str]] = None,
        default_token: Optional[str] = None,
        scheme: str = "Bearer",
    ) -> None:
        self._tokens = dict(tokens or {})
        self._default_token = default_token
        self._scheme = scheme

    async def credential_for(self, user_id: str) -> Credential:
        token = self._tokens.get(user_id) or self._default_token
        if not token:
            raise CredentialError(f"No credential available for user {user_id!r}")
        return Credential(scheme=self._scheme, token=token)


def tracker_credentials(settings: Settings) -> StaticCredentialProvider:
    """Credential provider for the issue tracker.

    With the Basic scheme, TRACKER_API_TOKEN is combined with TRACKER_EMAIL;
    any other scheme uses the token as-is.

    Raises:
        ConfigurationError: If no tracker token is configured
    """
    if not settings.TRACKER_API_TOKEN:
        raise ConfigurationError("TRACKER_API_TOKEN is not configured")

    if settings.TRACKER_AUTH_SCHEME.lower() == "basic":
        credential = basic_credential(settings.TRACKER_EMAIL, settings.TRACKER_API_TOKEN)
    else:
        credential = Credential(scheme=settings.TRACKER_AUTH_SCHEME, token=settings.TRACKER_API_TOKEN)

    logger.debug("Tracker credential configured (scheme=%s)", credential.scheme)
    return StaticCredentialProvider(credential)
