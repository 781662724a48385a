"""
Diffing and planning: desired graph vs. recorded state -> ordered operations.

Apply plans create and update in dependency order, then delete (in reverse
dependency order) whatever a still-managed domain no longer declares.
Resources of domains absent from the graph are left alone: dropping a
declaration never deletes anything by itself. Destroy plans delete every
recorded resource of the targeted domains in reverse dependency order.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from convergence.bundle import VOLATILE_TAGS
from convergence.graph import ResourceGraph, ResourceNode, resolve, topological_order
from convergence.state import ConvergenceState, ResourceRecord


class Mode(str, Enum):
    APPLY = "apply"
    DESTROY = "destroy"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Operation:
    action: Action
    address: str
    kind: str
    domain: str

    def __str__(self) -> str:
        return f"{self.action.value} {self.address}"


@dataclass
class Plan:
    mode: Mode
    operations: list[Operation] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def domains(self) -> set[str]:
        return {op.domain for op in self.operations}

    def for_domain(self, domain: str) -> list[Operation]:
        return [op for op in self.operations if op.domain == domain]

    def counts(self) -> dict[Action, int]:
        counts = {action: 0 for action in Action}
        for op in self.operations:
            counts[op.action] += 1
        return counts


def stable_tags(tags: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in tags.items() if k not in VOLATILE_TAGS}


def _resolved_inputs(
    node: ResourceNode, outputs: Mapping[str, Mapping[str, Any]]
) -> dict[str, Any] | None:
    try:
        return resolve(node.properties, outputs)
    except (KeyError, IndexError, TypeError):
        return None


def _needs_update(
    node: ResourceNode,
    record: ResourceRecord,
    outputs: Mapping[str, Mapping[str, Any]],
) -> bool:
    inputs = _resolved_inputs(node, outputs)
    if inputs is None or inputs != record.inputs:
        return True
    return stable_tags(node.tags) != stable_tags(record.tags)


def _delete_order(records: Iterable[ResourceRecord]) -> list[ResourceRecord]:
    by_address = {r.address: r for r in records}
    order = topological_order({a: r.depends_on for a, r in by_address.items()})
    return [by_address[a] for a in reversed(order)]


def select_domains(state: ConvergenceState, targets: Iterable[str] | None) -> set[str]:
    """Tuple keys of ``state`` matching ``targets`` (tuple keys or domain names)."""
    if targets is None:
        return set(state.domains) | {r.domain for r in state.resources.values()}
    wanted = set(targets)
    return {
        key
        for key, info in state.domains.items()
        if key in wanted or info.get("domain_name") in wanted
    }


def diff(
    graph: ResourceGraph,
    state: ConvergenceState,
    mode: Mode = Mode.APPLY,
    targets: Iterable[str] | None = None,
) -> Plan:
    """
    Minimal ordered operation list that moves ``state`` to ``graph``.

    Args:
        graph: Desired resources (ignored for destroy).
        state: Recorded resources.
        mode: APPLY or DESTROY.
        targets: Destroy only: tuple keys or domain names; None means all.
    """
    plan = Plan(mode=mode)

    if mode is Mode.DESTROY:
        domains = select_domains(state, targets)
        for record in _delete_order(r for r in state.resources.values() if r.domain in domains):
            plan.operations.append(
                Operation(Action.DELETE, record.address, record.kind, record.domain)
            )
        return plan

    outputs = state.outputs()
    for address in graph.topological_order():
        node = graph[address]
        record = state.resources.get(address)
        if record is None:
            action = Action.CREATE
        elif _needs_update(node, record, outputs):
            action = Action.UPDATE
        else:
            continue
        plan.operations.append(Operation(action, address, node.kind.value, node.domain))

    managed = graph.domains
    dropped = [
        r for r in state.resources.values() if r.domain in managed and r.address not in graph
    ]
    for record in _delete_order(dropped):
        plan.operations.append(
            Operation(Action.DELETE, record.address, record.kind, record.domain)
        )
    return plan
