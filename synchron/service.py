"""HTTP API for the admin console's user registry and operational state."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import AuditLogEntry, Role, Severity, Status, UserRecord
from .security import AdminTokenAuth
from .store import Store

logger = logging.getLogger("synchron.service")


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    year: Optional[str] = None
    email: str
    role: Role
    status: Status
    timetable: Optional[Any] = None
    joined: datetime
    last_seen: datetime = Field(..., alias="lastSeen")


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[StrictInt, str]] = None
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    year: Optional[Union[StrictInt, str]] = None
    role: Optional[Role] = None
    status: Optional[Status] = None
    timetable: Optional[Any] = None


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    created: bool
    total_users: int = Field(..., alias="totalUsers")
    user: UserResponse


class PatchUserRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Optional[str] = None
    status: Optional[str] = None
    name: Optional[str] = None
    year: Optional[Union[StrictInt, str]] = None


class ActionResponse(BaseModel):
    success: bool = True
    message: str


class StatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_users: int = Field(..., alias="totalUsers")
    system_status: str = Field(..., alias="systemStatus")
    uptime: float
    load_average: Optional[List[float]] = Field(default=None, alias="loadAverage")
    memory_usage: Optional[int] = Field(default=None, alias="memoryUsage")


class AuditLogView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: datetime
    action: str
    actor: str = Field(..., alias="user")
    details: str


class BroadcastView(BaseModel):
    message: str
    severity: Severity


class BroadcastRequest(BaseModel):
    message: Optional[str] = Field(default="", max_length=1000)
    severity: Severity = Severity.INFO


class BroadcastResponse(BaseModel):
    success: bool = True
    broadcast: Optional[BroadcastView] = None


class MaintenanceRequest(BaseModel):
    enabled: bool


class MaintenanceResponse(BaseModel):
    success: bool = True
    maintenance: bool


class PublicStatusResponse(BaseModel):
    maintenance: bool
    broadcast: Optional[BroadcastView] = None


def _user_to_response(record: UserRecord) -> UserResponse:
    return UserResponse(**record.to_dict())


def _entry_to_view(entry: AuditLogEntry) -> AuditLogView:
    return AuditLogView(
        id=entry.id,
        timestamp=entry.timestamp,
        action=entry.action,
        actor=entry.actor,
        details=entry.details,
    )


def _error(status_code: int, reason: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": reason}, headers=headers)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def register_error_handlers(app: FastAPI) -> None:
    """Render every failure as a ``{"error": reason}`` body."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, _describe_validation_error(exc))

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_error(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "User not found")

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
        return _error(status.HTTP_403_FORBIDDEN, str(exc))


def register_public_routes(app: FastAPI, store: Store) -> None:
    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/status", response_model=PublicStatusResponse)
    async def public_status() -> PublicStatusResponse:
        return PublicStatusResponse(**store.state.public_status())


def register_api_routes(
    app: FastAPI,
    store: Store,
    *,
    require_admin: Callable[..., Any],
) -> None:
    """Expose the authenticated admin endpoints on the provided application."""

    admin = [Depends(require_admin)]

    @app.post("/api/register", response_model=RegisterResponse, dependencies=admin)
    async def register(request: RegisterRequest) -> RegisterResponse:
        result = store.users.register(request.model_dump(exclude_unset=True))
        return RegisterResponse(
            created=result.created,
            total_users=result.total,
            user=_user_to_response(result.user),
        )

    @app.get("/api/users", response_model=List[UserResponse], dependencies=admin)
    async def list_users() -> List[UserResponse]:
        return [_user_to_response(record) for record in store.users.list_users()]

    @app.get("/api/users/{user_id}", response_model=UserResponse, dependencies=admin)
    async def get_user(user_id: str) -> UserResponse:
        return _user_to_response(store.users.get(user_id))

    @app.patch("/api/users/{user_id}", response_model=UserResponse, dependencies=admin)
    async def patch_user(user_id: str, request: PatchUserRequest) -> UserResponse:
        record = store.users.apply_patch(user_id, request.model_dump(exclude_unset=True))
        return _user_to_response(record)

    @app.delete("/api/users/{user_id}", response_model=ActionResponse, dependencies=admin)
    async def delete_user(user_id: str) -> ActionResponse:
        store.users.delete(user_id)
        return ActionResponse(message="User deleted successfully")

    @app.get("/api/stats", response_model=StatsResponse, dependencies=admin)
    async def stats() -> StatsResponse:
        return StatsResponse(**store.stats())

    @app.get("/api/logs", response_model=List[AuditLogView], dependencies=admin)
    async def list_logs() -> List[AuditLogView]:
        return [_entry_to_view(entry) for entry in store.audit.entries()]

    @app.post("/api/broadcast", response_model=BroadcastResponse, dependencies=admin)
    async def set_broadcast(request: BroadcastRequest) -> BroadcastResponse:
        broadcast = store.state.set_broadcast(request.message, request.severity)
        if broadcast is None:
            return BroadcastResponse(broadcast=None)
        return BroadcastResponse(
            broadcast=BroadcastView(message=broadcast.message, severity=broadcast.severity)
        )

    @app.post("/api/maintenance", response_model=MaintenanceResponse, dependencies=admin)
    async def set_maintenance(request: MaintenanceRequest) -> MaintenanceResponse:
        enabled = store.state.set_maintenance(request.enabled)
        return MaintenanceResponse(maintenance=enabled)

    @app.post("/api/cache/clear", response_model=ActionResponse, dependencies=admin)
    async def clear_cache() -> ActionResponse:
        logger.info("Cache clear requested by admin")
        return ActionResponse(message="Server cache cleared successfully")


def create_app(
    *,
    store: Store | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the admin console backend.

    The store is opened when the application starts. A store created here is
    closed on shutdown; a store passed in by the caller is only flushed.
    """

    app_settings = settings or load_settings()
    owns_store = store is None
    app_store = store or Store.from_settings(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_store.open()
        try:
            yield
        finally:
            if owns_store:
                app_store.close()
            else:
                app_store.flush()

    app = FastAPI(
        title="Synchron Admin API",
        version="0.1.0",
        description="User registry, audit log and operational state for the admin console.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = app_store
    app.state.settings = app_settings

    register_error_handlers(app)
    register_public_routes(app, app_store)
    register_api_routes(
        app,
        app_store,
        require_admin=AdminTokenAuth(app_settings.admin_token),
    )
    return app


__all__ = ["create_app", "register_api_routes", "register_public_routes"]
