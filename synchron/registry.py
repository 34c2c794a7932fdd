"""Authoritative in-memory registry of dashboard users."""

from __future__ import annotations

import copy
import logging
import os
import resource
import sys
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .audit import ADMIN_ACTOR, AuditLog
from .errors import NotFoundError, ValidationError
from .identity import normalize_identifier
from .models import (
    Role,
    Status,
    UserRecord,
    coerce_role,
    coerce_status,
    normalise_email,
    normalise_text,
)

logger = logging.getLogger("synchron.registry")

PATCHABLE_FIELDS = ("role", "status", "name", "year")
_REGISTER_FIELDS = ("name", "year", "email", "role", "status", "timetable")

SnapshotCallback = Callable[[List[Dict[str, Any]]], object]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalise_field(name: str, value: Any) -> Any:
    if name == "email":
        return normalise_email(value)
    if name == "role":
        return coerce_role(value)
    if name == "status":
        return coerce_status(value)
    if name == "timetable":
        return copy.deepcopy(value)
    return normalise_text(value, field_name=name)


def _load_average() -> Optional[Tuple[float, float, float]]:
    try:
        return os.getloadavg()
    except (AttributeError, OSError):
        return None


def _memory_usage() -> int:
    """Peak resident set size of this process in bytes."""

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in kilobytes everywhere except macOS.
    return peak if sys.platform == "darwin" else peak * 1024


@dataclass(frozen=True)
class Registration:
    """Outcome of :meth:`UserRegistry.register`."""

    user: UserRecord
    created: bool
    total: int


class UserRegistry:
    """Tracks registered users keyed by their normalized identifier.

    Every mutation appends an audit entry and hands a full snapshot to
    ``on_change`` while the registry lock is still held, so snapshots reach the
    writer in the same order the mutations were applied.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        *,
        on_change: Optional[SnapshotCallback] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._audit = audit_log
        self._on_change = on_change
        self._clock = clock
        self._users: Dict[str, UserRecord] = {}
        self._lock = threading.Lock()
        self._started = time.monotonic()

    def seed(self, entries: Iterable[Mapping[str, Any]]) -> int:
        """Install records loaded from a snapshot without logging or saving them."""

        now = self._clock()
        loaded: Dict[str, UserRecord] = {}
        for entry in entries:
            try:
                record = UserRecord.from_dict(entry, default_time=now)
            except ValueError as exc:
                logger.warning("Skipping invalid snapshot entry %r: %s", entry.get("id"), exc)
                continue
            loaded[record.id] = record

        with self._lock:
            self._users = loaded
        return len(loaded)

    def register(self, payload: Mapping[str, Any]) -> Registration:
        """Create a user or merge ``payload`` into the existing record."""

        if payload.get("id") in (None, "") or not payload.get("email"):
            raise ValidationError("Missing required fields: id and email")

        identifier = normalize_identifier(payload["id"])
        updates = {
            name: _normalise_field(name, payload[name])
            for name in _REGISTER_FIELDS
            if name in payload and not (name in ("role", "status") and payload[name] is None)
        }

        with self._lock:
            now = self._clock()
            existing = self._users.get(identifier)
            if existing is not None:
                record = replace(existing, **updates)
                record.last_seen = max(now, existing.last_seen)
                created = False
            else:
                record = UserRecord(
                    id=identifier,
                    email=updates["email"],
                    joined=now,
                    last_seen=now,
                    name=updates.get("name"),
                    year=updates.get("year"),
                    role=updates.get("role") or Role.STUDENT,
                    status=updates.get("status") or Status.ACTIVE,
                    timetable=updates.get("timetable"),
                )
                created = True

            self._users[identifier] = record
            total = len(self._users)
            actor = record.name or identifier
            if created:
                self._audit.append("REGISTER-NEW", actor, f"New user {identifier} registered")
            else:
                self._audit.append("REGISTER-RENEW", actor, f"User {identifier} re-registered")
            self._schedule_snapshot_locked()
            result = Registration(user=self._clone(record), created=created, total=total)

        logger.info(
            "%s user %s (%s total)",
            "Registered new" if created else "Refreshed",
            identifier,
            total,
        )
        return result

    def apply_patch(
        self,
        identifier: Any,
        fields: Mapping[str, Any],
        *,
        actor: str = ADMIN_ACTOR,
    ) -> UserRecord:
        """Update the whitelisted fields of an existing user.

        Fields outside :data:`PATCHABLE_FIELDS` are ignored. An unknown user
        raises :class:`NotFoundError` before any value is checked; all values
        are validated before the record is touched.
        """

        normalised_id = normalize_identifier(identifier)
        with self._lock:
            existing = self._users.get(normalised_id)
            if existing is None:
                raise NotFoundError(normalised_id)
            updates = {
                name: _normalise_field(name, fields[name])
                for name in PATCHABLE_FIELDS
                if name in fields
            }
            if not updates:
                return self._clone(existing)

            record = replace(existing, **updates)
            self._users[normalised_id] = record
            changed = ", ".join(sorted(updates))
            self._audit.append("UPDATE", actor, f"Updated {changed} for user {normalised_id}")
            self._schedule_snapshot_locked()
            result = self._clone(record)

        logger.info("User %s updated by %s (%s)", normalised_id, actor, changed)
        return result

    def delete(self, identifier: Any, *, actor: str = ADMIN_ACTOR) -> UserRecord:
        normalised_id = normalize_identifier(identifier)

        with self._lock:
            record = self._users.pop(normalised_id, None)
            if record is None:
                raise NotFoundError(normalised_id)
            self._audit.append("DELETE", actor, f"Deleted user {normalised_id}")
            self._schedule_snapshot_locked()

        logger.info("User %s deleted by %s", normalised_id, actor)
        return record

    def get(self, identifier: Any) -> UserRecord:
        normalised_id = normalize_identifier(identifier)
        with self._lock:
            record = self._users.get(normalised_id)
            if record is None:
                raise NotFoundError(normalised_id)
            return self._clone(record)

    def list_users(self) -> List[UserRecord]:
        with self._lock:
            return [self._clone(record) for record in self._users.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._snapshot_locked()

    def stats(self, *, maintenance: bool) -> Dict[str, Any]:
        load = _load_average()
        return {
            "totalUsers": self.count(),
            "systemStatus": "Maintenance" if maintenance else "Operational",
            "uptime": round(time.monotonic() - self._started, 3),
            "loadAverage": list(load) if load is not None else None,
            "memoryUsage": _memory_usage(),
        }

    def _snapshot_locked(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._users.values()]

    def _schedule_snapshot_locked(self) -> None:
        if self._on_change is None:
            return
        self._on_change(self._snapshot_locked())

    @staticmethod
    def _clone(record: UserRecord) -> UserRecord:
        return replace(record, timetable=copy.deepcopy(record.timetable))


__all__ = ["PATCHABLE_FIELDS", "Registration", "UserRegistry"]
