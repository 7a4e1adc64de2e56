"""Bearer credential check for mutating endpoints.

Identity verification itself is external; the app only needs something that
answers "is this token valid".
"""

from __future__ import annotations

import hmac
import logging
from typing import Protocol

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False, description="Marketplace API token")


class TokenVerifier(Protocol):
    @property
    def enabled(self) -> bool: ...

    def verify(self, token: str) -> bool: ...


class StaticTokenVerifier:
    """Accept a fixed set of tokens; an empty set disables the check."""

    def __init__(self, tokens: frozenset[str] | set[str] = frozenset()) -> None:
        self._tokens = frozenset(tokens)

    @property
    def enabled(self) -> bool:
        return bool(self._tokens)

    def verify(self, token: str) -> bool:
        # Bytes, because compare_digest rejects non-ASCII str.
        candidate = token.encode("utf-8")
        return any(hmac.compare_digest(candidate, known.encode("utf-8")) for known in self._tokens)


def require_bearer(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    verifier: TokenVerifier = request.app.state.token_verifier
    if not verifier.enabled:
        return None
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not verifier.verify(credentials.credentials):
        logger.info("auth event=rejected path=%s", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
