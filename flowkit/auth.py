"""Request authentication for the flow HTTP service."""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional

_BEARER_PREFIX = "Bearer "
_CHALLENGE = 'Bearer realm="flowd"'


class Unauthorized(Exception):
    """Credentials are missing or malformed; maps to HTTP 401."""

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)


class Forbidden(Exception):
    """Credentials were presented but rejected; maps to HTTP 403."""

    def __init__(self, message: str = "forbidden") -> None:
        super().__init__(message)


def _header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup; empty string when absent."""
    value = headers.get(name)
    if value is None:
        wanted = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == wanted), None)
    return value or ""


class Authenticator(ABC):
    """Decides whether a request may proceed.

    ``authenticate`` returns normally to allow the request. Raising
    :class:`Unauthorized` yields a 401; any other exception yields a 403.
    """

    @abstractmethod
    def authenticate(self, headers: Mapping[str, str]) -> None:
        """Check the request headers, raising to reject the request."""


@dataclass(frozen=True)
class BearerTokenAuthenticator(Authenticator):
    """Accepts ``Authorization: Bearer <token>`` matching a static token.

    An empty token disables authentication: every request is allowed.
    """

    token: str = field(default="", repr=False)

    def authenticate(self, headers: Mapping[str, str]) -> None:
        if not self.token:
            return
        header = _header(headers, "Authorization")
        if not header or not header.startswith(_BEARER_PREFIX):
            raise Unauthorized()
        presented = header[len(_BEARER_PREFIX):].strip()
        if not presented:
            raise Unauthorized()
        if not hmac.compare_digest(presented.encode("utf-8"), self.token.encode("utf-8")):
            raise Forbidden()


@dataclass(frozen=True)
class AuthFailure:
    """A rejected request: HTTP status, error message and extra response headers."""

    status: int
    message: str
    headers: dict[str, str] = field(default_factory=dict)


def auth_bypass(path: str) -> bool:
    """Whether ``path`` is served without authentication (the health check)."""
    return path == "/healthz"


def authorize(
    authenticator: Optional[Authenticator], path: str, headers: Mapping[str, str]
) -> Optional[AuthFailure]:
    """Apply ``authenticator`` to a request; ``None`` means the request may proceed."""
    if authenticator is None or auth_bypass(path):
        return None
    try:
        authenticator.authenticate(headers)
    except Unauthorized as exc:
        return AuthFailure(401, str(exc), {"WWW-Authenticate": _CHALLENGE})
    except Exception as exc:
        return AuthFailure(403, str(exc))
    return None