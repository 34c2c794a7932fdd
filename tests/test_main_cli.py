from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

import main
from main import _parse_args, _run_admin_command
from synchron.config import Settings


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_config_option_precedes_subcommand() -> None:
    args = _parse_args(["--config", "custom.yaml", "users", "--token", "t"])
    assert args.config == "custom.yaml"
    assert args.command == "users"
    assert args.token == "t"


def test_admin_subcommands_are_available() -> None:
    assert _parse_args(["maintenance", "on"]).state == "on"
    broadcast = _parse_args(["broadcast", "Fire drill", "--severity", "warning"])
    assert (broadcast.message, broadcast.severity) == ("Fire drill", "warning")
    assert _parse_args(["delete-user", "430000001"]).user_id == "430000001"


def _install_transport(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    original = main.AdminClient

    def factory(base_url: str, token: str, **kwargs: Any):
        return original(base_url, token, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(main, "AdminClient", factory)


def test_users_command_prints_table(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "id": "430000001",
                    "name": "Ali Abbas",
                    "role": "Prefect",
                    "status": "Active",
                    "lastSeen": "2024-03-01T08:00:00Z",
                }
            ],
        )

    _install_transport(monkeypatch, handler)
    args = _parse_args(["users", "--token", "secret", "--service-url", "http://registry.test"])

    assert _run_admin_command(args, Settings()) == 0

    output = capsys.readouterr().out
    assert "1 user(s) found" in output
    assert "Ali Abbas" in output
    assert seen[0].headers["X-Admin-Token"] == "secret"
    assert seen[0].url == "http://registry.test/api/users"


def test_maintenance_command_uses_configured_token(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    bodies: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["X-Admin-Token"] == "from-settings"
        return httpx.Response(200, json={"success": True, "maintenance": True})

    _install_transport(monkeypatch, handler)
    args = _parse_args(["maintenance", "on"])

    assert _run_admin_command(args, Settings(admin_token="from-settings")) == 0
    assert bodies == [{"enabled": True}]
    assert "Maintenance mode enabled." in capsys.readouterr().out


def test_admin_command_reports_api_errors(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    _install_transport(
        monkeypatch, lambda request: httpx.Response(403, json={"error": "Unauthorized access"})
    )
    args = _parse_args(["stats", "--token", "wrong"])

    assert _run_admin_command(args, Settings()) == 1
    assert "Unauthorized access" in capsys.readouterr().err


def test_admin_command_requires_a_token(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.delenv("SYNCHRON_SERVICE_URL", raising=False)
    args = _parse_args(["logs"])

    assert _run_admin_command(args, Settings()) == 2
    assert "No admin token available" in capsys.readouterr().err
