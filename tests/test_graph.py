"""Tests for the resource graph"""

import pytest

from convergence.errors import PlanError
from convergence.graph import (
    Ref,
    ResourceGraph,
    ResourceKind,
    ResourceNode,
    iter_refs,
    resolve,
    topological_order,
)


def node(address, *depends_on, **properties):
    return ResourceNode(
        address=address,
        kind=ResourceKind.BUCKET,
        name=address,
        domain=address.split(".")[0],
        properties=properties,
        depends_on=tuple(depends_on),
    )


class TestRef:
    def test_lookup_walks_path(self):
        outputs = {"records": [{"name": "a"}, {"name": "b"}]}
        assert Ref("x.certificate", "records", 1, "name").lookup(outputs) == "b"

    def test_equality(self):
        assert Ref("x.zone", "zone_id") == Ref("x.zone", "zone_id")
        assert Ref("x.zone", "zone_id") != Ref("x.zone", "name_servers")


class TestResolve:
    def test_nested(self):
        value = {"a": [Ref("x.zone", "zone_id"), {"b": Ref("x.bucket", "arn")}], "c": 1}
        outputs = {"x.zone": {"zone_id": "Z1"}, "x.bucket": {"arn": "arn:1"}}
        assert resolve(value, outputs) == {"a": ["Z1", {"b": "arn:1"}], "c": 1}

    def test_missing_output(self):
        with pytest.raises(KeyError):
            resolve({"a": Ref("x.zone", "zone_id")}, {})

    def test_iter_refs(self):
        refs = list(iter_refs({"a": (Ref("x.a"), [Ref("x.b")]), "c": "plain"}))
        assert [r.address for r in refs] == ["x.a", "x.b"]


class TestResourceGraph:
    def test_duplicate_address(self):
        graph = ResourceGraph([node("x.a")])
        with pytest.raises(PlanError, match="duplicate"):
            graph.add(node("x.a"))

    def test_unknown_dependency(self):
        with pytest.raises(PlanError, match="unknown"):
            ResourceGraph([node("x.a", "x.missing")]).validate()

    def test_reference_requires_dependency(self):
        graph = ResourceGraph([node("x.a"), node("x.b", arn=Ref("x.a", "arn"))])
        with pytest.raises(PlanError, match="without depending"):
            graph.validate()

    def test_order_follows_edges(self):
        graph = ResourceGraph(
            [
                node("x.c", "x.b", arn=Ref("x.b", "arn")),
                node("x.b", "x.a"),
                node("x.a"),
            ]
        )
        assert graph.topological_order() == ["x.a", "x.b", "x.c"]

    def test_merge_and_domains(self):
        graph = ResourceGraph([node("x.a")])
        graph.merge(ResourceGraph([node("y.a")]))
        assert len(graph) == 2
        assert "y.a" in graph
        assert graph.domains == {"x", "y"}


class TestTopologicalOrder:
    def test_ties_broken_by_address(self):
        assert topological_order({"b": [], "a": [], "c": ["b", "a"]}) == ["a", "b", "c"]

    def test_missing_dependencies_ignored(self):
        assert topological_order({"a": ["gone"], "b": ["a"]}) == ["a", "b"]

    def test_cycle(self):
        with pytest.raises(PlanError, match="cycle"):
            topological_order({"a": ["b"], "b": ["a"]})
