"""HTTP client for the authenticated admin API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from .security import ADMIN_TOKEN_HEADER

DEFAULT_SERVICE_URL = "http://localhost:3000"


class AdminAPIError(RuntimeError):
    """Raised when the admin API rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("Service URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error", "detail", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return default


class AdminClient:
    """Thin wrapper around the admin endpoints used by the CLI."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        cleaned_token = (token or "").strip()
        if not cleaned_token:
            raise ValueError("An admin token is required to use the admin API")
        self._client = httpx.Client(
            base_url=_normalize_base_url(base_url),
            headers={ADMIN_TOKEN_HEADER: cleaned_token},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "AdminClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise AdminAPIError(f"Failed to contact the admin API: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            default = f"Admin API request failed with status {response.status_code}"
            raise AdminAPIError(
                _extract_error_message(payload, default),
                status_code=response.status_code,
            )
        if payload is None:
            raise AdminAPIError("Admin API returned an invalid response")
        return payload

    def stats(self) -> Dict[str, Any]:
        return self._request("GET", "/api/stats")

    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/users")

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/users/{user_id}")

    def patch_user(self, user_id: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/users/{user_id}", json=fields)

    def delete_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/users/{user_id}")

    def list_logs(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/logs")

    def set_broadcast(self, message: str, severity: str = "info") -> Dict[str, Any]:
        return self._request("POST", "/api/broadcast", json={"message": message, "severity": severity})

    def set_maintenance(self, enabled: bool) -> Dict[str, Any]:
        return self._request("POST", "/api/maintenance", json={"enabled": enabled})

    def clear_cache(self) -> Dict[str, Any]:
        return self._request("POST", "/api/cache/clear")


__all__ = ["AdminAPIError", "AdminClient", "DEFAULT_SERVICE_URL"]
