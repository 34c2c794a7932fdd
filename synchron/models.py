"""Domain models for the user registry and operational state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import ValidationError
from .identity import normalize_identifier


class Role(str, Enum):
    """Roles an administrator can assign to a user."""

    STUDENT = "Student"
    PREFECT = "Prefect"
    TEACHER = "Teacher"
    ADMIN = "Admin"


class Status(str, Enum):
    """Account standing shown on the dashboard."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    WARNING = "Warning"


class Severity(str, Enum):
    """Presentation level of a broadcast message."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def coerce_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        allowed = ", ".join(role.value for role in Role)
        raise ValidationError(f"Invalid role {value!r}; expected one of {allowed}") from exc


def coerce_status(value: Any) -> Status:
    try:
        return Status(value)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in Status)
        raise ValidationError(f"Invalid status {value!r}; expected one of {allowed}") from exc


def coerce_severity(value: Any) -> Severity:
    try:
        return Severity(value)
    except ValueError as exc:
        allowed = ", ".join(severity.value for severity in Severity)
        raise ValidationError(f"Invalid severity {value!r}; expected one of {allowed}") from exc


MAX_TEXT_LENGTH = 255


def normalise_text(value: Any, *, field_name: str) -> Optional[str]:
    """Coerce a free-text field to a stripped string, or ``None`` when blank."""

    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValidationError(f"{field_name} must be a string")
    text = str(value).strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{field_name} must be {MAX_TEXT_LENGTH} characters or fewer")
    return text or None


def normalise_email(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Missing required fields: id and email")
    email = value.strip().lower()
    if len(email) > MAX_TEXT_LENGTH:
        raise ValidationError(f"email must be {MAX_TEXT_LENGTH} characters or fewer")
    return email


@dataclass
class UserRecord:
    """A registered end-user as tracked by the registry."""

    id: str
    email: str
    joined: datetime
    last_seen: datetime
    name: Optional[str] = None
    year: Optional[str] = None
    role: Role = Role.STUDENT
    status: Status = Status.ACTIVE
    timetable: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the wire representation used by the API and snapshots."""

        return {
            "id": self.id,
            "name": self.name,
            "year": self.year,
            "email": self.email,
            "role": self.role.value,
            "status": self.status.value,
            "timetable": self.timetable,
            "joined": _serialize_datetime(self.joined),
            "lastSeen": _serialize_datetime(self.last_seen),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, default_time: datetime) -> "UserRecord":
        """Rebuild a record from a snapshot entry.

        Snapshots written by older deployments may lack ``joined``/``lastSeen``
        or the role and status fields; those fall back to defaults. Text
        fields go through the same checks as a registration.
        """

        if not data.get("email"):
            raise ValidationError("Snapshot entry is missing an email address")

        joined = _parse_datetime(data.get("joined")) or default_time
        last_seen = _parse_datetime(data.get("lastSeen")) or joined

        return cls(
            id=normalize_identifier(data.get("id")),
            email=normalise_email(data.get("email")),
            joined=joined,
            last_seen=last_seen,
            name=normalise_text(data.get("name"), field_name="name"),
            year=normalise_text(data.get("year"), field_name="year"),
            role=coerce_role(data.get("role") or Role.STUDENT.value),
            status=coerce_status(data.get("status") or Status.ACTIVE.value),
            timetable=data.get("timetable"),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    """A single administrative or lifecycle event."""

    id: str
    timestamp: datetime
    action: str
    actor: str
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "user": self.actor,
            "details": self.details,
        }


@dataclass(frozen=True)
class Broadcast:
    """Advisory message shown to every client until cleared or replaced."""

    message: str
    severity: Severity = Severity.INFO

    def to_dict(self) -> Dict[str, str]:
        return {"message": self.message, "severity": self.severity.value}


__all__ = [
    "AuditLogEntry",
    "Broadcast",
    "MAX_TEXT_LENGTH",
    "Role",
    "Severity",
    "Status",
    "UserRecord",
    "coerce_role",
    "coerce_severity",
    "coerce_status",
    "normalise_email",
    "normalise_text",
]
