"""Command-line interface for the Synchron admin registry service."""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from synchron.client import DEFAULT_SERVICE_URL, AdminAPIError, AdminClient
from synchron.config import ConfigurationError, Settings, load_settings

logger = logging.getLogger("synchron.main")

_ADMIN_COMMANDS = {
    "users",
    "stats",
    "logs",
    "delete-user",
    "maintenance",
    "broadcast",
    "clear-cache",
}


def _add_client_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--service-url",
        default=None,
        help=f"Base URL of a running registry service (default: {DEFAULT_SERVICE_URL})",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Admin token; defaults to SYNCHRON_ADMIN_TOKEN, ADMIN_PASSWORD or the config file",
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchron admin registry utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: SYNCHRON_CONFIG or config/synchron.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP registry service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="Port for the HTTP API (default: PORT or 3000)",
    )

    users_parser = subparsers.add_parser("users", help="List registered users")
    _add_client_options(users_parser)

    stats_parser = subparsers.add_parser("stats", help="Show registry statistics")
    _add_client_options(stats_parser)

    logs_parser = subparsers.add_parser("logs", help="Show the audit log, newest first")
    _add_client_options(logs_parser)

    delete_parser = subparsers.add_parser("delete-user", help="Remove a registered user")
    delete_parser.add_argument("user_id", help="Identifier of the user to remove")
    _add_client_options(delete_parser)

    maintenance_parser = subparsers.add_parser("maintenance", help="Toggle maintenance mode")
    maintenance_parser.add_argument("state", choices=("on", "off"))
    _add_client_options(maintenance_parser)

    broadcast_parser = subparsers.add_parser(
        "broadcast", help="Set the broadcast message (an empty message clears it)"
    )
    broadcast_parser.add_argument("message", nargs="?", default="")
    broadcast_parser.add_argument(
        "--severity", choices=("info", "warning", "error"), default="info"
    )
    _add_client_options(broadcast_parser)

    cache_parser = subparsers.add_parser("clear-cache", help="Ask the service to clear its cache")
    _add_client_options(cache_parser)

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", *_ADMIN_COMMANDS}

    # Options given without a subcommand belong to ``serve``.
    global_args: list[str] = []
    if len(args_list) >= 2 and args_list[0] == "--config":
        global_args, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*global_args, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*global_args, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*global_args, *args_list])


def _load_settings(config: str | None) -> Settings:
    path = Path(config).expanduser().resolve(strict=False) if config else None
    try:
        return load_settings(path)
    except ConfigurationError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _serve(*, settings: Settings, host: str, port: int) -> None:
    from synchron.service import create_app
    import uvicorn

    logger.info(
        "Starting registry API on http://%s:%s (storage backend: %s)",
        host,
        port,
        settings.storage.backend,
    )
    logger.info("Admin token configured: %s", bool(settings.admin_token))

    app = create_app(settings=settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _print_users(users: list[dict[str, Any]]) -> None:
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<12}  {'Name':<24}  {'Role':<8}  {'Status':<8}  Last seen")
    print("-" * 80)
    for user in users:
        name = user.get("name") or "<no name>"
        print(
            f"{user['id']:<12}  {name:<24}  {user['role']:<8}  {user['status']:<8}  "
            f"{user.get('lastSeen') or '-'}"
        )


def _print_logs(entries: list[dict[str, Any]]) -> None:
    if not entries:
        print("The audit log is empty.")
        return
    for entry in entries:
        print(f"{entry['timestamp']}  {entry['action']:<15}  {entry['user']:<12}  {entry['details']}")


def _run_admin_command(args: argparse.Namespace, settings: Settings) -> int:
    service_url = args.service_url or os.getenv("SYNCHRON_SERVICE_URL") or DEFAULT_SERVICE_URL
    token = args.token or settings.admin_token
    if not token:
        print(
            "No admin token available. Pass --token or set SYNCHRON_ADMIN_TOKEN before running "
            "this command.",
            file=sys.stderr,
        )
        return 2

    try:
        with AdminClient(service_url, token) as client:
            if args.command == "users":
                _print_users(client.list_users())
            elif args.command == "stats":
                _print_json(client.stats())
            elif args.command == "logs":
                _print_logs(client.list_logs())
            elif args.command == "delete-user":
                result = client.delete_user(args.user_id)
                print(result.get("message", "User deleted."))
            elif args.command == "maintenance":
                result = client.set_maintenance(args.state == "on")
                state = "enabled" if result.get("maintenance") else "disabled"
                print(f"Maintenance mode {state}.")
            elif args.command == "broadcast":
                result = client.set_broadcast(args.message, args.severity)
                if result.get("broadcast"):
                    print("Broadcast published.")
                else:
                    print("Broadcast cleared.")
            elif args.command == "clear-cache":
                result = client.clear_cache()
                print(result.get("message", "Cache cleared."))
    except AdminAPIError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = _load_settings(args.config)

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port)
        return 0
    return _run_admin_command(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
