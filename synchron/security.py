"""Shared-secret authentication for the admin API."""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Request, status

from .errors import AuthorizationError

ADMIN_TOKEN_HEADER = "X-Admin-Token"

logger = logging.getLogger("synchron.security")


class MissingTokenError(AuthorizationError):
    """Raised when a request carries no admin token at all."""


class AdminTokenAuth:
    """Compare the ``X-Admin-Token`` header against the configured secret.

    When no secret is configured every request is rejected.
    """

    def __init__(self, token: Optional[str]) -> None:
        cleaned = (token or "").strip()
        self._token = cleaned or None
        if self._token is None:
            logger.warning(
                "No admin token configured; authenticated endpoints will reject every request"
            )

    @property
    def configured(self) -> bool:
        return self._token is not None

    def verify(self, provided: Optional[str]) -> None:
        if not provided:
            raise MissingTokenError("Missing admin token")
        if self._token is None or not secrets.compare_digest(
            provided.encode("utf-8"), self._token.encode("utf-8")
        ):
            raise AuthorizationError("Unauthorized access")

    async def __call__(self, request: Request) -> None:
        provided = request.headers.get(ADMIN_TOKEN_HEADER)
        try:
            self.verify(provided)
        except MissingTokenError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


__all__ = ["ADMIN_TOKEN_HEADER", "AdminTokenAuth", "MissingTokenError"]
