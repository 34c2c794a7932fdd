"""Lifecycle wrapper tying the registry, audit log and storage together."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .audit import SYSTEM_ACTOR, AuditLog, DEFAULT_LOG_CAPACITY
from .config import Settings
from .errors import PersistenceError
from .persistence import NullSnapshotStore, SnapshotStore, SnapshotWriter, build_snapshot_store
from .registry import UserRegistry
from .state import OperationalState

logger = logging.getLogger("synchron.store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    """Owns every piece of mutable state served by the API.

    ``open`` loads the durable snapshot exactly once and starts the background
    writer; ``close`` flushes pending writes. Request handlers receive the
    store through ``app.state`` rather than module globals.
    """

    def __init__(
        self,
        backend: Optional[SnapshotStore] = None,
        *,
        log_capacity: int = DEFAULT_LOG_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.backend = backend or NullSnapshotStore()
        self.audit = AuditLog(capacity=log_capacity, clock=clock)
        self.state = OperationalState(self.audit)
        self.writer = SnapshotWriter(self.backend, on_error=self._record_persistence_failure)
        self.users = UserRegistry(self.audit, on_change=self.writer.submit, clock=clock)
        self._opened = False
        self._closed = False
        self._lifecycle_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(build_snapshot_store(settings.storage), log_capacity=settings.log_capacity)

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self) -> "Store":
        """Seed the registry from the backend and start persisting changes.

        Calling ``open`` more than once has no further effect. A backend that
        cannot be read leaves the registry empty instead of failing startup.
        """

        with self._lifecycle_lock:
            if self._opened:
                return self
            self._opened = True

            try:
                entries = self.backend.load()
            except PersistenceError as exc:
                logger.warning(
                    "Could not load users from the %s backend; starting empty: %s",
                    self.backend.name,
                    exc,
                )
                self.audit.append(
                    "WARNING", SYSTEM_ACTOR, f"Snapshot load failed, starting empty: {exc}"
                )
                entries = []

            loaded = self.users.seed(entries)
            self.writer.start()

        self.audit.append(
            "STARTUP",
            SYSTEM_ACTOR,
            f"Registry started with {loaded} user(s) using the {self.backend.name} backend",
        )
        logger.info("Loaded %s user(s) from the %s backend", loaded, self.backend.name)
        return self

    def close(self) -> None:
        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
        self.writer.close()
        logger.info("Registry store closed")

    def flush(self) -> None:
        self.writer.flush()

    def stats(self) -> Dict[str, Any]:
        return self.users.stats(maintenance=self.state.maintenance)

    def _record_persistence_failure(self, exc: PersistenceError) -> None:
        self.audit.append("ERROR", SYSTEM_ACTOR, f"Failed to persist users: {exc}")

    def __enter__(self) -> "Store":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["Store"]
