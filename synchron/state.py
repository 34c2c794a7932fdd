"""Process-wide maintenance flag and broadcast message."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from .audit import ADMIN_ACTOR, AuditLog
from .models import Broadcast, Severity, coerce_severity

logger = logging.getLogger("synchron.state")


class OperationalState:
    """Holds the maintenance flag and the current broadcast, if any.

    Neither value is persisted: both reset to their defaults when the
    process restarts.
    """

    def __init__(self, audit_log: AuditLog) -> None:
        self._audit = audit_log
        self._maintenance = False
        self._broadcast: Optional[Broadcast] = None
        self._lock = threading.Lock()

    @property
    def maintenance(self) -> bool:
        with self._lock:
            return self._maintenance

    @property
    def broadcast(self) -> Optional[Broadcast]:
        with self._lock:
            return self._broadcast

    def set_maintenance(self, enabled: bool, *, actor: str = ADMIN_ACTOR) -> bool:
        enabled = bool(enabled)
        with self._lock:
            self._maintenance = enabled
        label = "enabled" if enabled else "disabled"
        self._audit.append("MAINTENANCE", actor, f"Maintenance mode {label}")
        logger.info("Maintenance mode %s by %s", label, actor)
        return enabled

    def set_broadcast(
        self,
        message: Optional[str],
        severity: Severity | str = Severity.INFO,
        *,
        actor: str = ADMIN_ACTOR,
    ) -> Optional[Broadcast]:
        """Publish ``message`` to every client, or clear the broadcast when empty."""

        text = (message or "").strip()
        if not text:
            with self._lock:
                self._broadcast = None
            self._audit.append("BROADCAST", actor, "Broadcast cleared")
            logger.info("Broadcast cleared by %s", actor)
            return None

        broadcast = Broadcast(message=text, severity=coerce_severity(severity))
        with self._lock:
            self._broadcast = broadcast
        self._audit.append(
            "BROADCAST",
            actor,
            f"Broadcast set ({broadcast.severity.value}): {broadcast.message}",
        )
        logger.info("Broadcast set by %s (%s)", actor, broadcast.severity.value)
        return broadcast

    def public_status(self) -> Dict[str, Any]:
        """Return the unauthenticated view polled by clients."""

        with self._lock:
            broadcast = self._broadcast
            maintenance = self._maintenance
        return {
            "maintenance": maintenance,
            "broadcast": broadcast.to_dict() if broadcast is not None else None,
        }


__all__ = ["OperationalState"]
