"""
File-backed backends for running the engine from a workstation.

``FileStateStore`` keeps one JSON state file per state key next to an
exclusive lock file (created with O_EXCL) and a fence counter. The
parameter store and the simulated cloud persist as plain JSON documents.
Any OS-level failure surfaces as BackendUnavailableError.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any

from convergence.backends.memory import InMemoryCloud, InMemoryParameterStore
from convergence.errors import BackendUnavailableError, LockContentionError
from convergence.graph import ResourceNode
from convergence.state import ConvergenceState, LockInfo, ResourceRecord

UNREADABLE_LOCK_ID = "unreadable"
UNREADABLE_LOCK_GRACE_SECONDS = 60.0


def _slug(key: str) -> str:
    return key.strip("/").replace("/", "__")


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp, path)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class FileStateStore:
    """
    StateStore over a directory shared by every run of the same catalog.

    A lock file that cannot be parsed (its holder died between creating and
    writing it) is reported as lock ``UNREADABLE_LOCK_ID`` whose lease runs
    ``unreadable_grace`` seconds from the file's mtime, so it expires like
    any other lease and ``force-unlock unreadable`` can remove it.
    """

    def __init__(
        self,
        directory: Path | str,
        unreadable_grace: float = UNREADABLE_LOCK_GRACE_SECONDS,
    ):
        self.directory = Path(directory)
        self.unreadable_grace = unreadable_grace

    def _path(self, key: str, suffix: str) -> Path:
        if not self.directory.is_dir():
            raise BackendUnavailableError(f"state directory {self.directory} does not exist")
        return self.directory / f"{_slug(key)}.{suffix}"

    def _current(self, key: str) -> LockInfo | None:
        path = self._path(key, "lock")
        try:
            return LockInfo.from_dict(_read_json(path))
        except FileNotFoundError:
            return None
        except (KeyError, TypeError, ValueError):
            return self._unreadable(key, path)
        except OSError as exc:
            raise BackendUnavailableError(f"cannot read {path}: {exc}") from exc

    def _unreadable(self, key: str, path: Path) -> LockInfo | None:
        try:
            created = path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackendUnavailableError(f"cannot stat {path}: {exc}") from exc
        try:
            fence = int(self._path(key, "fence").read_text(encoding="utf-8"))
        except (OSError, ValueError):
            fence = 0
        return LockInfo(
            lock_id=UNREADABLE_LOCK_ID,
            key=key,
            holder="unknown",
            operation="unknown",
            fence=fence,
            acquired_at=created,
            expires_at=created + self.unreadable_grace,
        )

    def acquire(
        self, key: str, holder: str, operation: str, lease_seconds: float, now: float
    ) -> LockInfo | None:
        lock_path = self._path(key, "lock")
        fence_path = self._path(key, "fence")
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        except OSError as exc:
            raise BackendUnavailableError(f"cannot create {lock_path}: {exc}") from exc

        try:
            fence = int(fence_path.read_text(encoding="utf-8")) + 1 if fence_path.exists() else 1
            fence_path.write_text(str(fence), encoding="utf-8")
            lock = LockInfo(
                lock_id=uuid.uuid4().hex,
                key=key,
                holder=holder,
                operation=operation,
                fence=fence,
                acquired_at=now,
                expires_at=now + lease_seconds,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(lock.to_dict(), handle)
        except (OSError, ValueError) as exc:
            lock_path.unlink(missing_ok=True)
            raise BackendUnavailableError(f"cannot record lock {lock_path}: {exc}") from exc
        return lock

    def renew(self, lock: LockInfo, lease_seconds: float, now: float) -> LockInfo:
        current = self._current(lock.key)
        if current is None or current.lock_id != lock.lock_id:
            raise LockContentionError(f"lock {lock.lock_id} on {lock.key} is no longer held")
        renewed = LockInfo.from_dict({**current.to_dict(), "expires_at": now + lease_seconds})
        try:
            _write_json(self._path(lock.key, "lock"), renewed.to_dict())
        except OSError as exc:
            raise BackendUnavailableError(f"cannot renew lock on {lock.key}: {exc}") from exc
        return renewed

    def release(self, lock: LockInfo) -> None:
        self.break_lock(lock.key, lock.lock_id)

    def locks(self, key: str) -> list[LockInfo]:
        current = self._current(key)
        return [current] if current is not None else []

    def break_lock(self, key: str, lock_id: str) -> None:
        current = self._current(key)
        if current is None or current.lock_id != lock_id:
            return
        try:
            self._path(key, "lock").unlink(missing_ok=True)
        except OSError as exc:
            raise BackendUnavailableError(f"cannot remove lock on {key}: {exc}") from exc

    def read(self, key: str) -> ConvergenceState:
        path = self._path(key, "json")
        try:
            return ConvergenceState.from_dict(_read_json(path))
        except FileNotFoundError:
            return ConvergenceState(key=key)
        except (OSError, ValueError) as exc:
            raise BackendUnavailableError(f"cannot read state {path}: {exc}") from exc

    def write(self, state: ConvergenceState, lock: LockInfo) -> None:
        current = self._current(state.key)
        if current is None or current.fence != lock.fence:
            raise LockContentionError(
                f"refusing write to {state.key}: fence {lock.fence} is not current"
            )
        try:
            _write_json(self._path(state.key, "json"), state.to_dict())
        except OSError as exc:
            raise BackendUnavailableError(f"cannot write state for {state.key}: {exc}") from exc


class FileParameterStore(InMemoryParameterStore):
    """Parameters persisted to one JSON document."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> dict[str, str]:
        try:
            return dict(_read_json(self.path))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            raise BackendUnavailableError(f"cannot read parameters {self.path}: {exc}") from exc

    def _save(self) -> None:
        try:
            _write_json(self.path, self.parameters)
        except OSError as exc:
            raise BackendUnavailableError(f"cannot write parameters {self.path}: {exc}") from exc

    def put(self, name: str, value: str) -> None:
        super().put(name, value)
        self._save()

    def delete(self, name: str) -> None:
        super().delete(name)
        self._save()


class LocalCloud(InMemoryCloud):
    """Simulated cloud whose resources survive between invocations."""

    def __init__(self, path: Path | str, **kwargs: Any):
        super().__init__(**kwargs)
        self.path = Path(path)
        try:
            data = _read_json(self.path)
        except FileNotFoundError:
            data = {}
        except (OSError, ValueError) as exc:
            raise BackendUnavailableError(f"cannot read {self.path}: {exc}") from exc
        self.resources = data.get("resources", {})
        self.certificate_statuses = data.get("certificate_statuses", {})
        self.next_id = int(data.get("next_id", 1))

    def _save(self) -> None:
        try:
            _write_json(
                self.path,
                {
                    "resources": self.resources,
                    "certificate_statuses": self.certificate_statuses,
                    "next_id": self.next_id,
                },
            )
        except OSError as exc:
            raise BackendUnavailableError(f"cannot write {self.path}: {exc}") from exc

    def create(self, node: ResourceNode, inputs: dict[str, Any]) -> dict[str, Any]:
        outputs = super().create(node, inputs)
        self._save()
        return outputs

    def update(
        self, record: ResourceRecord, node: ResourceNode, inputs: dict[str, Any]
    ) -> dict[str, Any]:
        outputs = super().update(record, node, inputs)
        self._save()
        return outputs

    def delete(self, record: ResourceRecord) -> None:
        super().delete(record)
        self._save()
