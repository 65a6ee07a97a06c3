"""
Bearer credential providers.

The engine never reads a token from global state; a ``CredentialProvider``
is injected into ``ConsultsAPIClient`` instead.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    """Interface that supplies the bearer token for backend requests."""

    @abstractmethod
    def get_token(self) -> str | None:
        """Return the current bearer token, or None when not logged in."""

    def invalidate(self) -> None:
        """Forget the current token after the backend rejected it (HTTP 401)."""


class StaticCredentials(CredentialProvider):
    """A fixed token, typically ``Settings.api_token``."""

    def __init__(self, token: str | None) -> None:
        self._token = token or None

    def get_token(self) -> str | None:
        return self._token


class SessionCredentials(CredentialProvider):
    """Token obtained through ``login`` and dropped on logout or expiry."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token or None

    def get_token(self) -> str | None:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token or None

    def clear(self) -> None:
        self._token = None

    def invalidate(self) -> None:
        if self._token is not None:
            logger.info("Discarding expired session token")
        self.clear()

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None
