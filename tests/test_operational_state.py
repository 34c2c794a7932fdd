from __future__ import annotations

import pytest

from synchron.audit import AuditLog
from synchron.errors import ValidationError
from synchron.models import Severity
from synchron.state import OperationalState


@pytest.fixture()
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture()
def state(audit_log: AuditLog) -> OperationalState:
    return OperationalState(audit_log)


def test_defaults_are_operational_without_broadcast(state: OperationalState) -> None:
    assert state.public_status() == {"maintenance": False, "broadcast": None}


def test_broadcast_set_and_clear_round_trip(state: OperationalState, audit_log: AuditLog) -> None:
    state.set_broadcast("", "info")
    assert state.public_status()["broadcast"] is None

    state.set_broadcast("Server down", "error")
    assert state.public_status()["broadcast"] == {"message": "Server down", "severity": "error"}

    state.set_broadcast("   ")
    assert state.public_status()["broadcast"] is None
    assert state.broadcast is None

    details = [entry.details for entry in audit_log.entries()]
    assert details[0] == "Broadcast cleared"
    assert details[1] == "Broadcast set (error): Server down"
    assert all(entry.action == "BROADCAST" for entry in audit_log.entries())


def test_invalid_severity_is_rejected_and_keeps_previous_broadcast(state: OperationalState) -> None:
    state.set_broadcast("Assembly moved", Severity.WARNING)

    with pytest.raises(ValidationError):
        state.set_broadcast("Oops", "critical")

    assert state.public_status()["broadcast"] == {"message": "Assembly moved", "severity": "warning"}


def test_maintenance_toggle_is_logged(state: OperationalState, audit_log: AuditLog) -> None:
    state.set_maintenance(True)
    assert state.public_status()["maintenance"] is True
    assert state.maintenance is True

    state.set_maintenance(False)
    assert state.maintenance is False

    entries = audit_log.entries()
    assert [entry.action for entry in entries] == ["MAINTENANCE", "MAINTENANCE"]
    assert entries[0].details == "Maintenance mode disabled"
    assert entries[1].details == "Maintenance mode enabled"
