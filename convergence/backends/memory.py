"""
In-process backends: state store, parameter store and a simulated cloud.

Used by the tests and as the base of the local file backends. The simulated
cloud assigns identifiers the way the real services shape them and can be
told to misbehave: names that already exist outside the state, certificates
that never validate, registrations the registrar refuses.
"""

import copy
import threading
import uuid
from dataclasses import replace
from typing import Any

from convergence.bundle import bucket_policy_document
from convergence.errors import (
    BackendUnavailableError,
    LockContentionError,
    ProviderError,
    RegistrationRejectedError,
    ResourceConflictError,
)
from convergence.graph import ResourceKind, ResourceNode
from convergence.provider import (
    CERTIFICATE_FAILED,
    CERTIFICATE_ISSUED,
    CERTIFICATE_PENDING,
)
from convergence.state import ConvergenceState, LockInfo, ResourceRecord

CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"


class InMemoryStateStore:
    """Thread-safe StateStore; set ``available = False`` to simulate an outage."""

    def __init__(self):
        self.available = True
        self.writes = 0
        self._states: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, LockInfo] = {}
        self._fences: dict[str, int] = {}
        self._mutex = threading.Lock()

    def _check(self) -> None:
        if not self.available:
            raise BackendUnavailableError("state store is unavailable")

    def acquire(
        self, key: str, holder: str, operation: str, lease_seconds: float, now: float
    ) -> LockInfo | None:
        with self._mutex:
            self._check()
            if key in self._locks:
                return None
            fence = self._fences.get(key, 0) + 1
            self._fences[key] = fence
            lock = LockInfo(
                lock_id=uuid.uuid4().hex,
                key=key,
                holder=holder,
                operation=operation,
                fence=fence,
                acquired_at=now,
                expires_at=now + lease_seconds,
            )
            self._locks[key] = lock
            return lock

    def renew(self, lock: LockInfo, lease_seconds: float, now: float) -> LockInfo:
        with self._mutex:
            self._check()
            current = self._locks.get(lock.key)
            if current is None or current.lock_id != lock.lock_id:
                raise LockContentionError(f"lock {lock.lock_id} on {lock.key} is no longer held")
            renewed = replace(current, expires_at=now + lease_seconds)
            self._locks[lock.key] = renewed
            return renewed

    def release(self, lock: LockInfo) -> None:
        with self._mutex:
            self._check()
            current = self._locks.get(lock.key)
            if current is not None and current.lock_id == lock.lock_id:
                del self._locks[lock.key]

    def locks(self, key: str) -> list[LockInfo]:
        with self._mutex:
            self._check()
            return [self._locks[key]] if key in self._locks else []

    def break_lock(self, key: str, lock_id: str) -> None:
        with self._mutex:
            self._check()
            current = self._locks.get(key)
            if current is not None and current.lock_id == lock_id:
                del self._locks[key]

    def read(self, key: str) -> ConvergenceState:
        with self._mutex:
            self._check()
            if key not in self._states:
                return ConvergenceState(key=key)
            return ConvergenceState.from_dict(copy.deepcopy(self._states[key]))

    def write(self, state: ConvergenceState, lock: LockInfo) -> None:
        with self._mutex:
            self._check()
            current = self._locks.get(state.key)
            if current is None or current.fence != lock.fence:
                raise LockContentionError(
                    f"refusing write to {state.key}: fence {lock.fence} is not current"
                )
            self._states[state.key] = copy.deepcopy(state.to_dict())
            self.writes += 1


class InMemoryParameterStore:
    """ParameterStore kept in a dict."""

    def __init__(self, parameters: dict[str, str] | None = None):
        self.available = True
        self.parameters: dict[str, str] = dict(parameters or {})

    def _check(self) -> None:
        if not self.available:
            raise BackendUnavailableError("parameter store is unavailable")

    def get_by_path(self, path: str) -> dict[str, str]:
        self._check()
        return {k: v for k, v in self.parameters.items() if k.startswith(path)}

    def put(self, name: str, value: str) -> None:
        self._check()
        self.parameters[name] = value

    def delete(self, name: str) -> None:
        self._check()
        self.parameters.pop(name, None)


class InMemoryCloud:
    """
    Simulated CloudProvider.

    Attributes:
        resources: Address -> {"kind", "name", "domain", "outputs"} of live resources.
        calls: (action, address) of every mutating call, in order.
        external: (kind, name) pairs that exist outside any recorded state.
        stalled_domains: Domains whose certificates stay pending.
        failed_domains: Domains whose certificates fail validation.
        rejected_registrations: Domains the registrar refuses.
    """

    def __init__(self, account_id: str = "123456789012", region: str = "us-east-1"):
        self.account_id = account_id
        self.region = region
        self.resources: dict[str, dict[str, Any]] = {}
        self.certificate_statuses: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.external: set[tuple[str, str]] = set()
        self.stalled_domains: set[str] = set()
        self.failed_domains: set[str] = set()
        self.rejected_registrations: set[str] = set()
        self.next_id = 1

    def _id(self, prefix: str) -> str:
        value = f"{prefix}{self.next_id:012X}"
        self.next_id += 1
        return value

    def _exists(self, kind: str, name: str) -> bool:
        if (kind, name) in self.external:
            return True
        return any(r["kind"] == kind and r["name"] == name for r in self.resources.values())

    def create(self, node: ResourceNode, inputs: dict[str, Any]) -> dict[str, Any]:
        kind = node.kind.value
        # Certificate validation is a waiter, not a physical resource.
        if node.kind is not ResourceKind.CERTIFICATE_VALIDATION and self._exists(kind, node.name):
            raise ResourceConflictError(node.domain, f"{kind} {node.name} already exists")
        self._check_registration(node, inputs)
        outputs = self._outputs(node, inputs, previous={})
        self.resources[node.address] = {
            "kind": kind,
            "name": node.name,
            "domain": node.domain,
            "outputs": outputs,
        }
        self.calls.append(("create", node.address))
        return copy.deepcopy(outputs)

    def update(
        self, record: ResourceRecord, node: ResourceNode, inputs: dict[str, Any]
    ) -> dict[str, Any]:
        live = self.resources.get(record.address)
        if live is None:
            raise ProviderError(node.domain, f"{record.kind} {record.name} no longer exists")
        self._check_registration(node, inputs)
        live["outputs"] = self._outputs(node, inputs, previous=live["outputs"])
        self.calls.append(("update", record.address))
        return copy.deepcopy(live["outputs"])

    def delete(self, record: ResourceRecord) -> None:
        self.resources.pop(record.address, None)
        self.calls.append(("delete", record.address))

    def certificate_status(self, certificate_arn: str) -> str:
        return self.certificate_statuses.get(certificate_arn, CERTIFICATE_ISSUED)

    def _check_registration(self, node: ResourceNode, inputs: dict[str, Any]) -> None:
        if node.kind is not ResourceKind.DOMAIN_REGISTRATION:
            return
        if inputs["domain_name"] in self.rejected_registrations:
            raise RegistrationRejectedError(
                node.domain, f"registrar rejected {inputs['domain_name']}"
            )

    def _outputs(
        self, node: ResourceNode, inputs: dict[str, Any], previous: dict[str, Any]
    ) -> dict[str, Any]:
        kind = node.kind
        name = node.name

        if kind is ResourceKind.BUCKET:
            return {
                "id": name,
                "bucket": name,
                "arn": f"arn:aws:s3:::{name}",
                "bucket_regional_domain_name": f"{name}.s3.{self.region}.amazonaws.com",
            }
        if kind is ResourceKind.HOSTED_ZONE:
            zone_id = previous.get("zone_id") or self._id("Z")
            return {
                "zone_id": zone_id,
                "name_servers": previous.get("name_servers")
                or [f"ns-{zone_id[-3:]}-{n}.awsdns.example" for n in range(4)],
            }
        if kind is ResourceKind.CERTIFICATE:
            arn = previous.get("arn") or (
                f"arn:aws:acm:{self.region}:{self.account_id}:certificate/{uuid.uuid4()}"
            )
            names = [inputs["domain_name"], *inputs.get("subject_alternative_names", [])]
            token = arn.rsplit("/", 1)[-1][:8]
            domain_name = inputs["domain_name"]
            if domain_name in self.failed_domains:
                self.certificate_statuses[arn] = CERTIFICATE_FAILED
            elif domain_name in self.stalled_domains:
                self.certificate_statuses[arn] = CERTIFICATE_PENDING
            else:
                self.certificate_statuses[arn] = CERTIFICATE_ISSUED
            return {
                "arn": arn,
                "validation_records": [
                    {
                        "domain_name": n,
                        "name": f"_{token}.{n}.",
                        "type": "CNAME",
                        "value": f"_{token}.acm-validations.aws.",
                    }
                    for n in names
                ],
            }
        if kind is ResourceKind.VALIDATION_RECORD:
            return {"fqdn": str(inputs["name"]).rstrip(".")}
        if kind is ResourceKind.CERTIFICATE_VALIDATION:
            return {"certificate_arn": inputs["certificate_arn"]}
        if kind is ResourceKind.ORIGIN_ACCESS_CONTROL:
            return {"id": previous.get("id") or self._id("E")}
        if kind is ResourceKind.EDGE_FUNCTION:
            return {
                "arn": f"arn:aws:cloudfront::{self.account_id}:function/{name}",
                "etag": self._id("ETAG"),
            }
        if kind is ResourceKind.RESPONSE_HEADERS_POLICY:
            return {"id": previous.get("id") or str(uuid.uuid4())}
        if kind is ResourceKind.DISTRIBUTION:
            distribution_id = previous.get("id") or self._id("E")
            return {
                "id": distribution_id,
                "arn": f"arn:aws:cloudfront::{self.account_id}:distribution/{distribution_id}",
                "domain_name": f"d{distribution_id[-10:].lower()}.cloudfront.net",
                "hosted_zone_id": CLOUDFRONT_HOSTED_ZONE_ID,
                "status": "Deployed",
            }
        if kind is ResourceKind.BUCKET_POLICY:
            return {
                "bucket": inputs["bucket"],
                "policy": bucket_policy_document(inputs["bucket_arn"], inputs["source_arn"]),
            }
        if kind is ResourceKind.ALIAS_RECORD:
            return {"fqdn": inputs["name"]}
        if kind is ResourceKind.DOMAIN_REGISTRATION:
            return {
                "domain_name": inputs["domain_name"],
                "name_servers": list(inputs["name_servers"]),
            }
        raise ProviderError(node.domain, f"unsupported resource kind {kind.value}")
