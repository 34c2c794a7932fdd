"""Exceptions raised by the registry, its storage backends and the API gate."""
from __future__ import annotations


class ValidationError(ValueError):
    """Raised when a request is rejected before any state is touched."""


class NotFoundError(KeyError):
    """Raised when an identifier does not match any registered user."""

    def __init__(self, identifier: str) -> None:
        super().__init__(identifier)
        self.identifier = identifier

    def __str__(self) -> str:
        return f"User {self.identifier} not found"


class AuthorizationError(PermissionError):
    """Raised when the admin token is missing or does not match."""


class PersistenceError(RuntimeError):
    """Raised when a durable backend cannot load or save a snapshot."""


__all__ = [
    "AuthorizationError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
]
