from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import httpx
import pytest

from synchron.config import StorageSettings
from synchron.errors import PersistenceError
from synchron.persistence import (
    EdgeConfigSnapshotStore,
    FileSnapshotStore,
    NullSnapshotStore,
    SnapshotStore,
    SnapshotWriter,
    build_snapshot_store,
    decode_snapshot,
)

USERS = [
    {"id": "1", "email": "a@b.com", "name": "A", "role": "Student", "status": "Active"},
    {"id": "2", "email": "c@d.com", "name": "C", "role": "Teacher", "status": "Warning"},
]


def test_null_store_discards_writes() -> None:
    store = NullSnapshotStore()
    store.save(USERS)
    assert store.load() == []


def test_file_store_writes_versioned_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "data" / "users.json"
    store = FileSnapshotStore(path)

    store.save(USERS)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["version"] == 1
    assert document["users"] == USERS
    assert store.load() == USERS
    assert sorted(item.name for item in path.parent.iterdir()) == ["users.json"]


def test_file_store_missing_or_empty_file_loads_nothing(tmp_path: Path) -> None:
    path = tmp_path / "users.json"
    store = FileSnapshotStore(path)
    assert store.load() == []

    path.write_text("   ", encoding="utf-8")
    assert store.load() == []


def test_file_store_reads_legacy_bare_arrays(tmp_path: Path) -> None:
    path = tmp_path / "users.json"
    path.write_text(json.dumps(USERS), encoding="utf-8")

    assert FileSnapshotStore(path).load() == USERS


def test_file_store_rejects_corrupt_documents(tmp_path: Path) -> None:
    path = tmp_path / "users.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        FileSnapshotStore(path).load()


def test_file_store_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    target = tmp_path / "users.json"
    target.mkdir()

    with pytest.raises(PersistenceError):
        FileSnapshotStore(target).save(USERS)


@pytest.mark.parametrize(
    "payload",
    [
        {"version": 2, "users": []},
        {"users": []},
        {"version": 1, "users": {"1": {}}},
        {"version": 1, "users": ["not-an-object"]},
        "users",
    ],
)
def test_decode_snapshot_rejects_unsupported_payloads(payload: Any) -> None:
    with pytest.raises(PersistenceError):
        decode_snapshot(payload)


def _edge_store(handler) -> EdgeConfigSnapshotStore:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return EdgeConfigSnapshotStore(
        "ecfg_test",
        read_token="read-token",
        api_token="api-token",
        team_id="team_1",
        client=client,
    )


def test_edge_config_load_reads_users_item() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"version": 1, "users": USERS})

    store = _edge_store(handler)

    assert store.load() == USERS
    request = seen[0]
    assert request.method == "GET"
    assert request.url.host == "edge-config.vercel.com"
    assert request.url.path == "/ecfg_test/item/users"
    assert request.url.params["token"] == "read-token"


def test_edge_config_load_treats_missing_item_as_empty() -> None:
    store = _edge_store(lambda request: httpx.Response(404, json={"error": "not found"}))
    assert store.load() == []


def test_edge_config_save_upserts_users_key() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "ok"})

    store = _edge_store(handler)
    store.save(USERS)

    request = seen[0]
    assert request.method == "PATCH"
    assert request.url.host == "api.vercel.com"
    assert request.url.path == "/v1/edge-config/ecfg_test/items"
    assert request.url.params["teamId"] == "team_1"
    assert request.headers["Authorization"] == "Bearer api-token"
    body = json.loads(request.content)
    assert body == {
        "items": [
            {"operation": "upsert", "key": "users", "value": {"version": 1, "users": USERS}},
        ]
    }


@pytest.mark.parametrize("status_code", [429, 500, 403])
def test_edge_config_save_failures_raise_persistence_error(status_code: int) -> None:
    store = _edge_store(lambda request: httpx.Response(status_code, text="nope"))
    with pytest.raises(PersistenceError):
        store.save(USERS)


def test_edge_config_network_errors_raise_persistence_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _edge_store(handler)
    with pytest.raises(PersistenceError):
        store.load()
    with pytest.raises(PersistenceError):
        store.save(USERS)


class RecordingStore(SnapshotStore):
    name = "recording"

    def __init__(self) -> None:
        self.saved: List[List[Dict[str, Any]]] = []
        self.closed = False

    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        self.saved.append([dict(user) for user in users])

    def load(self) -> List[Dict[str, Any]]:
        return []

    def close(self) -> None:
        self.closed = True


class BlockingStore(RecordingStore):
    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        self.started.set()
        assert self.release.wait(5)
        super().save(users)


class FailingStore(RecordingStore):
    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        raise PersistenceError("backend unavailable")


def test_writer_saves_submitted_snapshots_in_background() -> None:
    store = RecordingStore()
    writer = SnapshotWriter(store)
    writer.start()

    sequence = writer.submit(USERS)
    writer.flush()

    assert store.saved == [USERS]
    assert writer.last_written == sequence
    writer.close()
    assert store.closed is True
    assert writer.running is False


def test_writer_skips_superseded_snapshots_while_backend_is_busy() -> None:
    store = BlockingStore()
    writer = SnapshotWriter(store)
    writer.start()

    writer.submit([USERS[0]])
    assert store.started.wait(5)
    writer.submit(USERS)
    last = writer.submit([])
    store.release.set()
    writer.flush()

    assert store.saved == [[USERS[0]], []]
    assert writer.last_written == last
    writer.close()


def test_writer_reports_failures_without_raising() -> None:
    errors: List[PersistenceError] = []
    writer = SnapshotWriter(FailingStore(), on_error=errors.append)
    writer.start()

    writer.submit(USERS)
    writer.flush()

    assert writer.failures == 1
    assert writer.last_written == 0
    assert [str(error) for error in errors] == ["backend unavailable"]
    writer.close()


def test_writer_close_without_start_writes_pending_snapshot() -> None:
    store = RecordingStore()
    writer = SnapshotWriter(store)

    writer.submit([USERS[0]])
    writer.submit(USERS)
    writer.close()

    assert store.saved == [USERS]


def test_build_snapshot_store_selects_backend_by_name(tmp_path: Path) -> None:
    assert isinstance(build_snapshot_store(StorageSettings()), NullSnapshotStore)

    file_store = build_snapshot_store(StorageSettings(backend="file", path=tmp_path / "u.json"))
    assert isinstance(file_store, FileSnapshotStore)
    assert file_store.path == tmp_path / "u.json"

    edge_store = build_snapshot_store(
        StorageSettings(
            backend="edge-config",
            edge_config_id="ecfg_1",
            edge_config_token="read",
            api_token="write",
        )
    )
    assert isinstance(edge_store, EdgeConfigSnapshotStore)
    edge_store.close()


def test_writer_drops_snapshots_submitted_after_close() -> None:
    store = RecordingStore()
    writer = SnapshotWriter(store)
    writer.start()
    sequence = writer.submit(USERS)
    writer.close()

    assert writer.submit([USERS[0]]) == sequence
    writer.flush()
    writer.close()

    assert store.saved == [USERS]
    assert writer.last_written == sequence
