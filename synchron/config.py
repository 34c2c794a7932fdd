"""Configuration management for the registry service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .audit import DEFAULT_LOG_CAPACITY

STORAGE_BACKENDS = ("none", "file", "edge-config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class ConfigurationError(ValueError):
    """Raised when the service is started with an invalid configuration."""


def _env_int(value: Optional[str], default: int, *, name: str) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer value {value!r} for {name}") from exc


def _env_path(value: Optional[str], default: Optional[Path]) -> Optional[Path]:
    if value is None or value.strip() == "":
        return default
    return Path(value).expanduser().resolve(strict=False)


def _clean(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _split_origins(value: object) -> Tuple[str, ...]:
    if value is None:
        return ("*",)
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]  # type: ignore[union-attr]
    origins = tuple(item.strip() for item in items if item.strip())
    return origins or ("*",)


def default_data_path() -> Path:
    return (_PROJECT_ROOT / "data" / "users.json").resolve(strict=False)


@dataclass(frozen=True)
class StorageSettings:
    """Selects and configures the durable snapshot backend."""

    backend: str = "none"
    path: Path = field(default_factory=default_data_path)
    edge_config_id: Optional[str] = None
    edge_config_token: Optional[str] = None
    api_token: Optional[str] = None
    team_id: Optional[str] = None

    def validate(self) -> "StorageSettings":
        if self.backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend {self.backend!r}; expected one of {', '.join(STORAGE_BACKENDS)}"
            )
        if self.backend == "edge-config":
            missing = [
                name
                for name, value in (
                    ("edge_config_id", self.edge_config_id),
                    ("edge_config_token", self.edge_config_token),
                    ("api_token", self.api_token),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"Missing required Edge Config settings: {', '.join(missing)}"
                )
        return self

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "StorageSettings":
        raw_path = _clean(data.get("path"))
        if raw_path:
            candidate = Path(raw_path).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            path = candidate.resolve(strict=False)
        else:
            path = default_data_path()

        backend = _clean(data.get("backend")) or ("file" if raw_path else "none")
        return StorageSettings(
            backend=backend.lower(),
            path=path,
            edge_config_id=_clean(data.get("edge_config_id")),
            edge_config_token=_clean(data.get("edge_config_token")),
            api_token=_clean(data.get("api_token")),
            team_id=_clean(data.get("team_id")),
        )


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the registry service."""

    admin_token: Optional[str] = None
    log_capacity: int = DEFAULT_LOG_CAPACITY
    cors_origins: Tuple[str, ...] = ("*",)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        storage_raw = data.get("storage") or {}
        if not isinstance(storage_raw, Mapping):
            raise ConfigurationError("The 'storage' section must be a mapping")

        capacity = data.get("log_capacity", DEFAULT_LOG_CAPACITY)
        try:
            log_capacity = int(capacity)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid log_capacity {capacity!r}") from exc

        return Settings(
            admin_token=_clean(data.get("admin_token")),
            log_capacity=log_capacity,
            cors_origins=_split_origins(data.get("cors_origins")),
            storage=StorageSettings.from_dict(storage_raw, base_path=base_path),
        )

    def validate(self) -> "Settings":
        if self.log_capacity < 1:
            raise ConfigurationError("log_capacity must be at least 1")
        self.storage.validate()
        return self


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the YAML configuration file, if one is in use."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (_PROJECT_ROOT / "config" / "synchron.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


def _load_yaml(config_path: Path) -> Dict[str, object]:
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file {config_path} is not valid YAML") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration file must contain a mapping at the top level")
    return raw


def _apply_environment(settings: Settings, environ: Mapping[str, str]) -> Settings:
    storage = settings.storage

    data_path = _env_path(environ.get("SYNCHRON_DATA_PATH"), None)
    backend = _clean(environ.get("SYNCHRON_STORAGE"))
    if data_path is not None:
        storage = replace(storage, path=data_path)
        if backend is None and storage.backend == "none":
            backend = "file"
    if backend is not None:
        storage = replace(storage, backend=backend.lower())

    storage = replace(
        storage,
        edge_config_id=_clean(environ.get("EDGE_CONFIG_ID")) or storage.edge_config_id,
        edge_config_token=_clean(environ.get("EDGE_CONFIG_TOKEN")) or storage.edge_config_token,
        api_token=_clean(environ.get("VERCEL_API_TOKEN")) or storage.api_token,
        team_id=_clean(environ.get("VERCEL_TEAM_ID")) or storage.team_id,
    )

    admin_token = (
        _clean(environ.get("SYNCHRON_ADMIN_TOKEN"))
        or _clean(environ.get("ADMIN_PASSWORD"))
        or settings.admin_token
    )
    cors_raw = environ.get("SYNCHRON_CORS_ORIGINS")
    cors_origins = _split_origins(cors_raw) if cors_raw else settings.cors_origins

    return replace(
        settings,
        admin_token=admin_token,
        log_capacity=_env_int(
            environ.get("SYNCHRON_LOG_CAPACITY"), settings.log_capacity, name="SYNCHRON_LOG_CAPACITY"
        ),
        cors_origins=cors_origins,
        storage=storage,
    )


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the optional YAML file and the environment.

    Environment variables take precedence over values in the file.
    """

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("SYNCHRON_CONFIG"))

    if path is not None:
        settings = Settings.from_dict(_load_yaml(path), base_path=path.parent)
    else:
        settings = Settings()

    return _apply_environment(settings, env).validate()


__all__ = [
    "ConfigurationError",
    "STORAGE_BACKENDS",
    "Settings",
    "StorageSettings",
    "default_data_path",
    "load_settings",
    "resolve_config_path",
]
