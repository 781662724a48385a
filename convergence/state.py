"""
Convergence state and the lock that guards it.

The engine talks to storage only through ``StateStore``. Locks are leases:
each carries an expiry and a fencing token that increases with every
acquisition for the same key. A lock is stale only once its lease has
expired, and a write is accepted only from the holder of the current fence,
so a run whose lease lapsed cannot overwrite the state of its successor.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from convergence.errors import LockContentionError

logger = logging.getLogger(__name__)


@dataclass
class ResourceRecord:
    """What the engine knows about one resource that exists."""

    address: str
    kind: str
    name: str
    domain: str
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "kind": self.kind,
            "name": self.name,
            "domain": self.domain,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "depends_on": list(self.depends_on),
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceRecord":
        return cls(
            address=data["address"],
            kind=data["kind"],
            name=data["name"],
            domain=data["domain"],
            inputs=dict(data.get("inputs", {})),
            outputs=dict(data.get("outputs", {})),
            depends_on=list(data.get("depends_on", [])),
            tags=dict(data.get("tags", {})),
        )


@dataclass
class ConvergenceState:
    """
    Persisted record of every resource that currently exists.

    Attributes:
        key: State key derived from the catalog identity.
        serial: Incremented on every write.
        resources: Records keyed by graph address.
        domains: Tuple key -> {"domain_name", "environment"} of every tuple
            that has at least one recorded resource.
    """

    key: str
    serial: int = 0
    resources: dict[str, ResourceRecord] = field(default_factory=dict)
    domains: dict[str, dict[str, str]] = field(default_factory=dict)

    def outputs(self) -> dict[str, dict[str, Any]]:
        return {address: r.outputs for address, r in self.resources.items()}

    def for_domain(self, domain: str) -> list[ResourceRecord]:
        return [r for r in self.resources.values() if r.domain == domain]

    def record(self, record: ResourceRecord) -> None:
        self.resources[record.address] = record

    def forget(self, address: str) -> None:
        domain = self.resources.pop(address).domain
        if not self.for_domain(domain):
            self.domains.pop(domain, None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "serial": self.serial,
            "domains": self.domains,
            "resources": [
                self.resources[address].to_dict() for address in sorted(self.resources)
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConvergenceState":
        records = [ResourceRecord.from_dict(item) for item in data.get("resources", [])]
        return cls(
            key=data["key"],
            serial=int(data.get("serial", 0)),
            resources={r.address: r for r in records},
            domains={k: dict(v) for k, v in data.get("domains", {}).items()},
        )


@dataclass(frozen=True)
class LockInfo:
    """
    A held lease on one state key.

    Attributes:
        lock_id: Unique id of this acquisition.
        key: State key the lock guards.
        holder: Deployer identity that took the lock.
        operation: "apply" or "destroy".
        fence: Fencing token; higher than any earlier lock on the key.
        acquired_at: Epoch seconds.
        expires_at: Epoch seconds after which the lock is stale.
    """

    lock_id: str
    key: str
    holder: str
    operation: str
    fence: int
    acquired_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_id": self.lock_id,
            "key": self.key,
            "holder": self.holder,
            "operation": self.operation,
            "fence": self.fence,
            "acquired_at": self.acquired_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockInfo":
        return cls(
            lock_id=data["lock_id"],
            key=data["key"],
            holder=data["holder"],
            operation=data["operation"],
            fence=int(data["fence"]),
            acquired_at=float(data["acquired_at"]),
            expires_at=float(data["expires_at"]),
        )


class StateStore(Protocol):
    """
    Transactional storage for ConvergenceState and its lock.

    Implementations raise BackendUnavailableError when storage is unreachable.
    """

    def acquire(
        self, key: str, holder: str, operation: str, lease_seconds: float, now: float
    ) -> LockInfo | None:
        """Take the lock, or return None while another lock is held."""
        ...

    def renew(self, lock: LockInfo, lease_seconds: float, now: float) -> LockInfo:
        """Extend a held lease; LockContentionError if it is no longer held."""
        ...

    def release(self, lock: LockInfo) -> None:
        """Release the lock; a no-op when it was already broken."""
        ...

    def locks(self, key: str) -> list[LockInfo]: ...

    def break_lock(self, key: str, lock_id: str) -> None: ...

    def read(self, key: str) -> ConvergenceState: ...

    def write(self, state: ConvergenceState, lock: LockInfo) -> None:
        """Persist ``state``; LockContentionError unless ``lock`` holds the current fence."""
        ...


def clear_stale_locks(store: StateStore, key: str, now: float) -> list[LockInfo]:
    """Break every lock on ``key`` whose lease has expired."""
    broken = []
    for lock in store.locks(key):
        if lock.is_expired(now):
            logger.warning(
                "Clearing stale lock %s on %s (held by %s since %.0f)",
                lock.lock_id,
                key,
                lock.holder,
                lock.acquired_at,
            )
            store.break_lock(key, lock.lock_id)
            broken.append(lock)
    return broken


def acquire_lock(
    store: StateStore,
    key: str,
    holder: str,
    operation: str,
    lease_seconds: float,
    attempts: int = 5,
    backoff_seconds: float = 1.0,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> LockInfo:
    """
    Acquire the lock on ``key`` with bounded exponential backoff.

    Expired leases are cleared before every attempt.

    Raises:
        LockContentionError: still held by a live lock after ``attempts`` tries.
    """
    for attempt in range(1, attempts + 1):
        clear_stale_locks(store, key, clock())
        lock = store.acquire(key, holder, operation, lease_seconds, clock())
        if lock is not None:
            logger.info("Acquired lock %s on %s (fence %d)", lock.lock_id, key, lock.fence)
            return lock
        if attempt < attempts:
            delay = backoff_seconds * 2 ** (attempt - 1)
            logger.debug("Lock on %s is held; retrying in %.1fs", key, delay)
            sleep(delay)

    holders = ", ".join(f"{lock.holder} ({lock.operation})" for lock in store.locks(key))
    raise LockContentionError(
        f"could not acquire lock on {key} after {attempts} attempts; held by {holders or 'unknown'}"
    )
