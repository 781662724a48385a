"""
Convergence engine: lock, diff, plan, apply, publish, unlock.

One run moves through ``Idle -> Locking -> Diffing -> Planning -> Applying ->
Publishing -> Idle`` or ends in ``Failed``. Mutating operations run one at a
time against the single shared state, which is written after every completed
operation, so an interrupted or failed run leaves the state describing
exactly what exists. A domain-scoped failure stops the remaining operations
of that domain only; other domains keep converging. Registry entries of a
domain are touched only when every operation of that domain succeeded. The
lock is released on every path.

Nothing is retried here: re-running is always safe because the next diff
re-derives whatever work is left.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from convergence.bundle import (
    ROLE_BUCKET,
    ROLE_CERTIFICATE,
    ROLE_DISTRIBUTION,
    ROLE_ZONE,
    ResourceBundle,
    merge_bundles,
)
from convergence.credentials import CredentialProvider
from convergence.errors import (
    ConvergenceError,
    DomainError,
    ProviderError,
    ValidationTimeoutError,
)
from convergence.graph import ResourceGraph, ResourceKind, resolve
from convergence.plan import Action, Mode, Operation, Plan, diff, select_domains
from convergence.provider import CERTIFICATE_FAILED, CERTIFICATE_ISSUED, CloudProvider
from convergence.registry import RegistryPublisher
from convergence.state import (
    ConvergenceState,
    LockInfo,
    ResourceRecord,
    StateStore,
    acquire_lock,
)

logger = logging.getLogger(__name__)

CERTIFICATE_VALIDATION_TIMEOUT = 30 * 60


class RunPhase(str, Enum):
    IDLE = "idle"
    LOCKING = "locking"
    DIFFING = "diffing"
    PLANNING = "planning"
    APPLYING = "applying"
    PUBLISHING = "publishing"
    FAILED = "failed"


class DomainStatus(str, Enum):
    UNCHANGED = "unchanged"
    CONVERGED = "converged"
    DESTROYED = "destroyed"
    FAILED = "failed"


@dataclass
class DomainResult:
    key: str
    domain_name: str
    environment: str
    status: DomainStatus = DomainStatus.UNCHANGED
    error: str | None = None
    error_type: str | None = None
    registry_changes: list[str] = field(default_factory=list)


@dataclass
class RunReport:
    """Outcome of one run: phase trail, executed operations, per-domain results."""

    mode: Mode
    phases: list[RunPhase] = field(default_factory=lambda: [RunPhase.IDLE])
    plan: Plan | None = None
    executed: list[Operation] = field(default_factory=list)
    domains: dict[str, DomainResult] = field(default_factory=dict)

    @property
    def phase(self) -> RunPhase:
        return self.phases[-1]

    @property
    def failed_domains(self) -> list[DomainResult]:
        return [r for r in self.domains.values() if r.status is DomainStatus.FAILED]

    @property
    def succeeded(self) -> bool:
        return self.phase is RunPhase.IDLE and not self.failed_domains

    def enter(self, phase: RunPhase) -> None:
        logger.info("%s: %s -> %s", self.mode.value, self.phase.value, phase.value)
        self.phases.append(phase)


@dataclass
class _Run:
    report: RunReport
    state: ConvergenceState
    graph: ResourceGraph
    lock: LockInfo
    failed: set[str] = field(default_factory=set)


class ConvergenceEngine:
    """
    Converges a set of resource bundles against one state key.

    Args:
        store: State and lock storage.
        cloud: Authenticated provider API.
        registry: Publisher for the service-discovery entries.
        credentials: Deployer identity source; the identity is the lock holder.
        state_key: Stable key derived from the catalog identity.
        lease_seconds: Lock lease, renewed after every operation.
        lock_attempts: Acquisition attempts before LockContentionError.
        lock_backoff: First backoff delay; doubles on each attempt.
        certificate_timeout: Bound on waiting for certificate issuance.
        certificate_poll: Delay between certificate status checks.
        publish_environment: Only tuples of this environment publish
            registry entries (the key schema carries no environment).
    """

    def __init__(
        self,
        store: StateStore,
        cloud: CloudProvider,
        registry: RegistryPublisher,
        credentials: CredentialProvider,
        *,
        state_key: str,
        lease_seconds: float = 3600,
        lock_attempts: int = 5,
        lock_backoff: float = 1.0,
        certificate_timeout: float = CERTIFICATE_VALIDATION_TIMEOUT,
        certificate_poll: float = 15.0,
        publish_environment: str = "prd",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.cloud = cloud
        self.registry = registry
        self.credentials = credentials
        self.state_key = state_key
        self.lease_seconds = lease_seconds
        self.lock_attempts = lock_attempts
        self.lock_backoff = lock_backoff
        self.certificate_timeout = certificate_timeout
        self.certificate_poll = certificate_poll
        self.publish_environment = publish_environment
        self.clock = clock
        self.sleep = sleep

    def read_state(self) -> ConvergenceState:
        return self.store.read(self.state_key)

    def plan(
        self,
        bundles: Iterable[ResourceBundle],
        mode: Mode = Mode.APPLY,
        targets: Iterable[str] | None = None,
    ) -> Plan:
        """Read-only preview; takes no lock."""
        graph = merge_bundles(bundles) if mode is Mode.APPLY else ResourceGraph()
        return diff(graph, self.read_state(), mode, targets)

    def apply(self, bundles: Iterable[ResourceBundle]) -> RunReport:
        """Converge every bundle to its declared state."""
        return self._run(Mode.APPLY, list(bundles), None)

    def destroy(self, targets: Iterable[str] | None = None) -> RunReport:
        """Delete every recorded resource of ``targets`` (all domains when None)."""
        return self._run(Mode.DESTROY, [], None if targets is None else list(targets))

    def _run(
        self,
        mode: Mode,
        bundles: list[ResourceBundle],
        targets: list[str] | None,
    ) -> RunReport:
        report = RunReport(mode=mode)
        holder = self.credentials.resolve().identity

        report.enter(RunPhase.LOCKING)
        lock = acquire_lock(
            self.store,
            self.state_key,
            holder,
            mode.value,
            self.lease_seconds,
            attempts=self.lock_attempts,
            backoff_seconds=self.lock_backoff,
            clock=self.clock,
            sleep=self.sleep,
        )

        run = _Run(
            report=report,
            state=ConvergenceState(self.state_key),
            graph=ResourceGraph(),
            lock=lock,
        )
        try:
            report.enter(RunPhase.DIFFING)
            run.state = self.store.read(self.state_key)
            if mode is Mode.APPLY:
                run.graph = merge_bundles(bundles)
            self._init_results(run, bundles, targets)

            report.enter(RunPhase.PLANNING)
            report.plan = diff(run.graph, run.state, mode, targets)
            logger.info(
                "%s plan: %d operation(s) across %d domain(s)",
                mode.value,
                len(report.plan.operations),
                len(report.plan.domains),
            )

            report.enter(RunPhase.APPLYING)
            domain_info = {b.domain.key: b.domain for b in bundles}
            for operation in report.plan.operations:
                self._step(run, operation, domain_info)

            report.enter(RunPhase.PUBLISHING)
            self._publish(run, bundles)

            report.enter(RunPhase.FAILED if run.failed else RunPhase.IDLE)
        except BaseException:
            report.enter(RunPhase.FAILED)
            try:
                self._release(run.lock)
            except ConvergenceError as exc:
                # The run's own failure is the one to report.
                logger.error("Could not release lock on %s: %s", self.state_key, exc)
            raise
        self._release(run.lock)
        return report

    def _release(self, lock: LockInfo) -> None:
        self.store.release(lock)
        logger.info("Released lock on %s", self.state_key)

    def _init_results(
        self,
        run: _Run,
        bundles: list[ResourceBundle],
        targets: list[str] | None,
    ) -> None:
        if run.report.mode is Mode.APPLY:
            for bundle in bundles:
                d = bundle.domain
                run.report.domains[d.key] = DomainResult(d.key, d.domain_name, d.environment)
            return
        for key in sorted(select_domains(run.state, targets)):
            info = run.state.domains.get(key, {})
            run.report.domains[key] = DomainResult(
                key, info.get("domain_name", ""), info.get("environment", "")
            )

    def _step(self, run: _Run, operation: Operation, domain_info: dict[str, Any]) -> None:
        result = run.report.domains.get(operation.domain)
        if operation.domain in run.failed:
            logger.warning("Skipping %s: domain %s already failed", operation, operation.domain)
            return
        try:
            self._execute(run, operation, domain_info)
        except DomainError as exc:
            run.failed.add(operation.domain)
            if result is not None:
                result.status = DomainStatus.FAILED
                result.error = exc.reason
                result.error_type = type(exc).__name__
            logger.error("%s failed: %s", operation, exc)
            return

        run.report.executed.append(operation)
        if result is not None:
            result.status = (
                DomainStatus.DESTROYED
                if run.report.mode is Mode.DESTROY
                else DomainStatus.CONVERGED
            )
        run.state.serial += 1
        self.store.write(run.state, run.lock)
        run.lock = self.store.renew(run.lock, self.lease_seconds, self.clock())

    def _execute(self, run: _Run, operation: Operation, domain_info: dict[str, Any]) -> None:
        logger.info("%s", operation)
        state = run.state

        if operation.action is Action.DELETE:
            self.cloud.delete(state.resources[operation.address])
            state.forget(operation.address)
            return

        node = run.graph[operation.address]
        try:
            inputs = resolve(node.properties, state.outputs())
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(node.domain, f"{node.address}: unresolved reference {exc}") from exc

        if operation.action is Action.CREATE:
            outputs = self.cloud.create(node, inputs)
        else:
            outputs = self.cloud.update(state.resources[node.address], node, inputs)

        if node.kind is ResourceKind.CERTIFICATE_VALIDATION:
            self._wait_for_certificate(run, node.domain, inputs["certificate_arn"])

        state.record(
            ResourceRecord(
                address=node.address,
                kind=node.kind.value,
                name=node.name,
                domain=node.domain,
                inputs=inputs,
                outputs=dict(outputs),
                depends_on=list(node.depends_on),
                tags=dict(node.tags),
            )
        )
        domain = domain_info.get(node.domain)
        if domain is not None:
            state.domains[node.domain] = {
                "domain_name": domain.domain_name,
                "environment": domain.environment,
            }

    def _wait_for_certificate(self, run: _Run, domain: str, certificate_arn: str) -> None:
        deadline = self.clock() + self.certificate_timeout
        while True:
            status = self.cloud.certificate_status(certificate_arn)
            if status == CERTIFICATE_ISSUED:
                logger.info("Certificate %s issued", certificate_arn)
                return
            if status == CERTIFICATE_FAILED:
                raise ProviderError(domain, f"certificate {certificate_arn} failed validation")
            now = self.clock()
            if now >= deadline:
                raise ValidationTimeoutError(
                    domain,
                    f"certificate {certificate_arn} not issued after "
                    f"{self.certificate_timeout:.0f}s (status {status})",
                )
            logger.debug("Certificate %s is %s; waiting", certificate_arn, status)
            self.sleep(min(self.certificate_poll, deadline - now))
            run.lock = self.store.renew(run.lock, self.lease_seconds, self.clock())

    def _publish(self, run: _Run, bundles: list[ResourceBundle]) -> None:
        for key, result in sorted(run.report.domains.items()):
            if key in run.failed or result.environment != self.publish_environment:
                continue
            if run.report.mode is Mode.DESTROY:
                result.registry_changes = self.registry.unpublish(result.domain_name)
                continue
            bundle = next(b for b in bundles if b.domain.key == key)
            outputs = run.state.outputs()
            values = {
                name: str(ref.lookup(outputs[ref.address]))
                for name, ref in bundle.registry_fields.items()
            }
            result.registry_changes = self.registry.publish(result.domain_name, values)


def deployed_domains(state: ConvergenceState) -> dict[str, dict[str, Any]]:
    """Per-tuple summary of the identifiers recorded in ``state``."""

    def output(key: str, role: str, name: str) -> Any:
        record = state.resources.get(f"{key}.{role}")
        return record.outputs.get(name) if record else None

    summary = {}
    for key, info in sorted(state.domains.items()):
        summary[key] = {
            "domain_name": info.get("domain_name"),
            "environment": info.get("environment"),
            "bucket_name": output(key, ROLE_BUCKET, "bucket"),
            "bucket_arn": output(key, ROLE_BUCKET, "arn"),
            "cloudfront_distribution_id": output(key, ROLE_DISTRIBUTION, "id"),
            "cloudfront_domain_name": output(key, ROLE_DISTRIBUTION, "domain_name"),
            "certificate_arn": output(key, ROLE_CERTIFICATE, "arn"),
            "hosted_zone_id": output(key, ROLE_ZONE, "zone_id"),
        }
    return summary
