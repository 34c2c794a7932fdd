"""Durable snapshot backends and the background writer that feeds them."""
from __future__ import annotations

import json
import logging
import os
import queue
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from .config import StorageSettings
from .errors import PersistenceError

logger = logging.getLogger("synchron.persistence")

SNAPSHOT_VERSION = 1
SNAPSHOT_KEY = "users"

EDGE_CONFIG_READ_URL = "https://edge-config.vercel.com"
VERCEL_API_URL = "https://api.vercel.com"

Snapshot = List[Dict[str, Any]]


def encode_snapshot(users: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    return {"version": SNAPSHOT_VERSION, SNAPSHOT_KEY: [dict(user) for user in users]}


def decode_snapshot(payload: Any) -> Snapshot:
    """Extract the user list from a stored snapshot.

    Deployments that predate the versioned envelope stored a bare array of
    users; those are still accepted.
    """

    if payload is None:
        return []
    if isinstance(payload, list):
        users = payload
    elif isinstance(payload, dict):
        version = payload.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise PersistenceError("Snapshot is missing a valid version number")
        if version > SNAPSHOT_VERSION:
            raise PersistenceError(
                f"Snapshot version {version} is newer than supported version {SNAPSHOT_VERSION}"
            )
        users = payload.get(SNAPSHOT_KEY) or []
        if not isinstance(users, list):
            raise PersistenceError("Snapshot 'users' entry must be a list")
    else:
        raise PersistenceError(f"Unexpected snapshot payload of type {type(payload).__name__}")

    for entry in users:
        if not isinstance(entry, dict):
            raise PersistenceError("Snapshot entries must be JSON objects")
    return [dict(entry) for entry in users]


class SnapshotStore(ABC):
    """Interface implemented by every durable backend."""

    name = "abstract"

    @abstractmethod
    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        """Durably store the full set of users, replacing any previous snapshot."""

    @abstractmethod
    def load(self) -> Snapshot:
        """Return the most recently stored users, or an empty list."""

    def close(self) -> None:
        """Release any resources held by the backend."""


class NullSnapshotStore(SnapshotStore):
    """Backend used when no durable storage is configured."""

    name = "none"

    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        return None

    def load(self) -> Snapshot:
        return []


class FileSnapshotStore(SnapshotStore):
    """Stores the snapshot as a JSON document on the local filesystem."""

    name = "file"

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        document = json.dumps(encode_snapshot(users), indent=2)
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            handle, temp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(handle, "w", encoding="utf-8") as stream:
                    stream.write(document)
                    stream.flush()
                    os.fsync(stream.fileno())
                os.replace(temp_name, self._path)
            except BaseException:
                with suppress(OSError):
                    os.unlink(temp_name)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write snapshot to {self._path}: {exc}") from exc

    def load(self) -> Snapshot:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceError(f"Failed to read snapshot from {self._path}: {exc}") from exc

        if not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise PersistenceError(f"Snapshot at {self._path} is not valid JSON") from exc
        return decode_snapshot(payload)


class EdgeConfigSnapshotStore(SnapshotStore):
    """Mirrors the snapshot into a Vercel Edge Config item.

    Edge Config is optimised for reads: writes go through the management API,
    can take several seconds to propagate and are rate limited. Reads use the
    edge endpoint with a read token.
    """

    name = "edge-config"

    def __init__(
        self,
        edge_config_id: str,
        *,
        read_token: str,
        api_token: str,
        team_id: Optional[str] = None,
        key: str = SNAPSHOT_KEY,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        cleaned_id = (edge_config_id or "").strip()
        if not cleaned_id:
            raise ValueError("Edge Config id must not be empty")
        self._edge_config_id = cleaned_id
        self._read_token = read_token
        self._api_token = api_token
        self._team_id = team_id
        self._key = key
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def _read_url(self) -> str:
        return f"{EDGE_CONFIG_READ_URL}/{self._edge_config_id}/item/{self._key}"

    def _write_url(self) -> str:
        return f"{VERCEL_API_URL}/v1/edge-config/{self._edge_config_id}/items"

    def load(self) -> Snapshot:
        try:
            response = self._client.get(self._read_url(), params={"token": self._read_token})
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Failed to contact Edge Config: {exc}") from exc

        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise PersistenceError(
                f"Edge Config read failed with status {response.status_code}: {response.text.strip()}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PersistenceError("Edge Config returned an invalid JSON payload") from exc
        return decode_snapshot(payload)

    def save(self, users: Sequence[Mapping[str, Any]]) -> None:
        params = {"teamId": self._team_id} if self._team_id else None
        body = {
            "items": [
                {"operation": "upsert", "key": self._key, "value": encode_snapshot(users)},
            ]
        }
        headers = {"Authorization": f"Bearer {self._api_token}"}
        try:
            response = self._client.patch(
                self._write_url(), json=body, headers=headers, params=params
            )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Failed to contact the Vercel API: {exc}") from exc

        if response.status_code == 429:
            raise PersistenceError("Edge Config write was rate limited")
        if response.status_code >= 400:
            raise PersistenceError(
                f"Edge Config write failed with status {response.status_code}: {response.text.strip()}"
            )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


@dataclass(frozen=True)
class _PendingSnapshot:
    sequence: int
    users: Snapshot


_STOP = object()


class SnapshotWriter:
    """Single background thread that hands snapshots to a :class:`SnapshotStore`.

    ``submit`` returns immediately. When several snapshots queue up while a
    slow backend is busy, only the newest one is written since every snapshot
    carries the full user set.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        on_error: Optional[Callable[[PersistenceError], None]] = None,
    ) -> None:
        self._store = store
        self._on_error = on_error
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._sequence = 0
        self._sequence_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._last_written = 0
        self._failures = 0
        self._closed = False

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def last_written(self) -> int:
        """Sequence number of the most recent snapshot saved successfully."""

        return self._last_written

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run, name="synchron-snapshot-writer", daemon=True
        )
        self._thread.start()

    def submit(self, users: Sequence[Mapping[str, Any]]) -> int:
        """Queue a snapshot and return its sequence number.

        Once the writer is closed nothing drains the queue, so the snapshot is
        dropped and the last assigned sequence number is returned.
        """

        with self._sequence_lock:
            if self._closed:
                logger.warning(
                    "Dropping snapshot of %s users submitted after the writer was closed",
                    len(users),
                )
                return self._sequence
            self._sequence += 1
            sequence = self._sequence
            self._queue.put(_PendingSnapshot(sequence=sequence, users=[dict(user) for user in users]))
        logger.debug("Queued snapshot #%s (%s users)", sequence, len(users))
        return sequence

    def flush(self) -> None:
        """Block until every queued snapshot has been handled."""

        if not self.running:
            self._drain_inline()
            return
        self._queue.join()

    def close(self, timeout: Optional[float] = 10.0) -> None:
        with self._sequence_lock:
            if self._closed:
                return
            self._closed = True
        if self.running:
            self._queue.put(_STOP)
            assert self._thread is not None
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Snapshot writer did not stop within %s seconds", timeout)
        else:
            self._drain_inline()
        self._thread = None
        self._store.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            batch = [item]
            while True:
                try:
                    batch.append(self._queue.get_nowait())
                except queue.Empty:
                    break

            pending = [entry for entry in batch if isinstance(entry, _PendingSnapshot)]
            try:
                if pending:
                    if len(pending) > 1:
                        logger.debug(
                            "Skipping %s superseded snapshot(s) before #%s",
                            len(pending) - 1,
                            pending[-1].sequence,
                        )
                    self._write(pending[-1])
            finally:
                for _ in batch:
                    self._queue.task_done()

            if any(entry is _STOP for entry in batch):
                return

    def _drain_inline(self) -> None:
        latest: Optional[_PendingSnapshot] = None
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, _PendingSnapshot):
                latest = item
            self._queue.task_done()
        if latest is not None:
            self._write(latest)

    def _write(self, snapshot: _PendingSnapshot) -> None:
        try:
            self._store.save(snapshot.users)
        except PersistenceError as exc:
            self._failures += 1
            logger.warning(
                "Snapshot #%s could not be saved to the %s backend: %s",
                snapshot.sequence,
                self._store.name,
                exc,
            )
            if self._on_error is not None:
                self._on_error(exc)
            return
        except Exception as exc:  # pragma: no cover
            self._failures += 1
            logger.exception(
                "Unexpected error while saving snapshot #%s to the %s backend",
                snapshot.sequence,
                self._store.name,
            )
            if self._on_error is not None:
                self._on_error(PersistenceError(str(exc)))
            return
        self._last_written = snapshot.sequence
        logger.debug(
            "Saved snapshot #%s (%s users) to the %s backend",
            snapshot.sequence,
            len(snapshot.users),
            self._store.name,
        )


def build_snapshot_store(settings: StorageSettings) -> SnapshotStore:
    """Return the backend named by the storage settings."""

    settings.validate()
    if settings.backend == "file":
        return FileSnapshotStore(settings.path)
    if settings.backend == "edge-config":
        return EdgeConfigSnapshotStore(
            settings.edge_config_id or "",
            read_token=settings.edge_config_token or "",
            api_token=settings.api_token or "",
            team_id=settings.team_id,
        )
    return NullSnapshotStore()


__all__ = [
    "EdgeConfigSnapshotStore",
    "FileSnapshotStore",
    "NullSnapshotStore",
    "SNAPSHOT_VERSION",
    "SnapshotStore",
    "SnapshotWriter",
    "build_snapshot_store",
    "decode_snapshot",
    "encode_snapshot",
]
