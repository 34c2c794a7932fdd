from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from synchron.client import AdminAPIError, AdminClient


def _client(handler) -> AdminClient:
    return AdminClient(
        "http://registry.test/",
        "secret",
        transport=httpx.MockTransport(handler),
    )


def test_requests_carry_the_admin_token_header() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"totalUsers": 3, "systemStatus": "Operational"})

    with _client(handler) as client:
        stats = client.stats()

    assert stats["totalUsers"] == 3
    assert seen[0].headers["X-Admin-Token"] == "secret"
    assert seen[0].url.path == "/api/stats"


def test_patch_and_broadcast_send_json_bodies() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    with _client(handler) as client:
        client.patch_user("430000001", status="Warning")
        client.set_broadcast("Fire drill at 10", "warning")

    assert (seen[0].method, seen[0].url.path) == ("PATCH", "/api/users/430000001")
    assert json.loads(seen[0].content) == {"status": "Warning"}
    assert json.loads(seen[1].content) == {"message": "Fire drill at 10", "severity": "warning"}


def test_error_bodies_become_admin_api_errors() -> None:
    handler = lambda request: httpx.Response(404, json={"error": "User not found"})

    with _client(handler) as client:
        with pytest.raises(AdminAPIError) as excinfo:
            client.delete_user("999")

    assert str(excinfo.value) == "User not found"
    assert excinfo.value.status_code == 404


def test_connection_failures_become_admin_api_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(AdminAPIError, match="Failed to contact"):
            client.list_users()


def test_token_is_required() -> None:
    with pytest.raises(ValueError):
        AdminClient("http://registry.test", "  ")
