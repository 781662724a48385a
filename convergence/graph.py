"""
Explicit resource graph: typed nodes with declared dependency edges.

Nodes reference each other's outputs through ``Ref`` values embedded in their
properties. A reference is only legal to a node listed in ``depends_on``, so
ordering is a property of the data, checked by ``ResourceGraph.validate`` and
enforced by ``topological_order``.
"""

from dataclasses import dataclass, field
from enum import Enum
from graphlib import CycleError, TopologicalSorter
from typing import Any, Iterable, Iterator, Mapping

from convergence.errors import PlanError


class ResourceKind(str, Enum):
    BUCKET = "bucket"
    HOSTED_ZONE = "hosted-zone"
    CERTIFICATE = "certificate"
    VALIDATION_RECORD = "validation-record"
    CERTIFICATE_VALIDATION = "certificate-validation"
    ORIGIN_ACCESS_CONTROL = "origin-access-control"
    EDGE_FUNCTION = "edge-function"
    RESPONSE_HEADERS_POLICY = "response-headers-policy"
    DISTRIBUTION = "distribution"
    BUCKET_POLICY = "bucket-policy"
    ALIAS_RECORD = "alias-record"
    DOMAIN_REGISTRATION = "domain-registration"


@dataclass(frozen=True, init=False)
class Ref:
    """
    Reference to an output of another node, resolved at apply time.

    ``Ref("k.certificate", "validation_records", 0, "name")`` reads
    ``outputs["validation_records"][0]["name"]`` of node ``k.certificate``.
    """

    address: str
    path: tuple[Any, ...]

    def __init__(self, address: str, *path: Any):
        object.__setattr__(self, "address", address)
        object.__setattr__(self, "path", tuple(path))

    def lookup(self, outputs: Mapping[str, Any]) -> Any:
        value: Any = outputs
        for step in self.path:
            value = value[step]
        return value


@dataclass(frozen=True)
class ResourceNode:
    """
    One provider resource in a domain's bundle.

    Attributes:
        address: Unique graph address, ``{tuple key}.{role}``.
        kind: Resource type understood by the cloud provider.
        name: Physical name derived from the tuple key.
        domain: Key of the owning domain tuple.
        properties: Desired inputs; may contain Ref values at any depth.
        depends_on: Addresses that must exist before this node.
        tags: Merged tag set.
    """

    address: str
    kind: ResourceKind
    name: str
    domain: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def role(self) -> str:
        return self.address.rsplit(".", 1)[-1]


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every Ref nested anywhere in ``value``."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def resolve(value: Any, outputs: Mapping[str, Mapping[str, Any]]) -> Any:
    """
    Replace every Ref in ``value`` by the referenced output.

    Raises:
        KeyError: the referenced node or attribute has no output yet.
    """
    if isinstance(value, Ref):
        return value.lookup(outputs[value.address])
    if isinstance(value, Mapping):
        return {key: resolve(item, outputs) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(item, outputs) for item in value]
    return value


class ResourceGraph:
    """A set of nodes keyed by address, merged across domain bundles."""

    def __init__(self, nodes: Iterable[ResourceNode] = ()):
        self._nodes: dict[str, ResourceNode] = {}
        for node in nodes:
            self.add(node)

    def add(self, node: ResourceNode) -> None:
        if node.address in self._nodes:
            raise PlanError(f"duplicate resource address {node.address}")
        self._nodes[node.address] = node

    def merge(self, other: "ResourceGraph") -> None:
        for node in other:
            self.add(node)

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, address: object) -> bool:
        return address in self._nodes

    def __getitem__(self, address: str) -> ResourceNode:
        return self._nodes[address]

    @property
    def domains(self) -> set[str]:
        return {node.domain for node in self._nodes.values()}

    def validate(self) -> None:
        """Every dependency exists and every Ref targets a declared dependency."""
        for node in self._nodes.values():
            for dependency in node.depends_on:
                if dependency not in self._nodes:
                    raise PlanError(f"{node.address} depends on unknown {dependency}")
            for ref in iter_refs(node.properties):
                if ref.address not in node.depends_on:
                    raise PlanError(
                        f"{node.address} references {ref.address} "
                        "without depending on it"
                    )

    def topological_order(self) -> list[str]:
        """Addresses with dependencies first; ties broken by address."""
        self.validate()
        return topological_order(
            {node.address: node.depends_on for node in self._nodes.values()}
        )


def topological_order(edges: Mapping[str, Iterable[str]]) -> list[str]:
    """
    Deterministic topological sort of ``{address: dependencies}``.

    Dependencies absent from ``edges`` are ignored, so recorded state whose
    dependencies were already removed still sorts.
    """
    sorter: TopologicalSorter[str] = TopologicalSorter()
    for address in sorted(edges):
        sorter.add(address, *sorted(d for d in edges[address] if d in edges))
    try:
        sorter.prepare()
    except CycleError as exc:
        raise PlanError(f"dependency cycle: {' -> '.join(exc.args[1])}") from exc

    order: list[str] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready())
        order.extend(ready)
        sorter.done(*ready)
    return order
