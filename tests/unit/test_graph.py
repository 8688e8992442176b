"""Tests for plan ordering: topological order, tie-breaks, cycles and dangling refs."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stackdeploy.errors import PlanError
from stackdeploy.executor.graph import dependents_map, topological_order
from stackdeploy.models.resources import ResourceKind, ResourceRef, ResourceSpec


def _spec(name: str, *deps: ResourceSpec) -> ResourceSpec:
    return ResourceSpec(
        kind=ResourceKind.NAMESPACE,
        name=name,
        depends_on=frozenset(d.ref for d in deps),
    )


@st.composite
def _acyclic_plans(draw) -> list[ResourceSpec]:
    """Random DAG: node i may only depend on nodes < i, then shuffled."""
    size = draw(st.integers(min_value=1, max_value=10))
    refs = [ResourceRef(ResourceKind.NAMESPACE, "", f"r{i}") for i in range(size)]
    specs = []
    for i, ref in enumerate(refs):
        deps = draw(st.sets(st.sampled_from(refs[:i]))) if i else set()
        specs.append(ResourceSpec(kind=ref.kind, name=ref.name, depends_on=frozenset(deps)))
    return draw(st.permutations(specs))


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestTopologicalOrder:
    @given(specs=_acyclic_plans())
    @settings(max_examples=100)
    def test_every_spec_follows_its_dependencies(self, specs) -> None:
        order = topological_order(specs)
        position = {spec.ref: i for i, spec in enumerate(order)}

        assert sorted(position) == sorted(s.ref for s in specs)
        for spec in order:
            for dep in spec.depends_on:
                assert position[dep] < position[spec.ref]

    def test_independent_specs_keep_plan_order(self) -> None:
        c, a, b = _spec("c"), _spec("a"), _spec("b")
        assert [s.name for s in topological_order([c, a, b])] == ["c", "a", "b"]

    def test_dependency_listed_after_dependent_is_moved_first(self) -> None:
        ns = _spec("ns")
        app = _spec("app", ns)
        assert [s.name for s in topological_order([app, ns])] == ["ns", "app"]

    def test_chain(self) -> None:
        a = _spec("a")
        b = _spec("b", a)
        c = _spec("c", b)
        d = _spec("d", c)
        assert [s.name for s in topological_order([d, c, b, a])] == ["a", "b", "c", "d"]


# ---------------------------------------------------------------------------
# Invalid plans
# ---------------------------------------------------------------------------


class TestInvalidPlans:
    def test_cycle_raises_plan_error(self) -> None:
        a = _spec("a")
        b = _spec("b", a)
        a_cyclic = ResourceSpec(kind=a.kind, name="a", depends_on=frozenset({b.ref}))

        with pytest.raises(PlanError, match="Dependency cycle"):
            topological_order([a_cyclic, b])

    def test_self_dependency_is_a_cycle(self) -> None:
        ref = ResourceRef(ResourceKind.NAMESPACE, "", "a")
        with pytest.raises(PlanError):
            topological_order([ResourceSpec(kind=ref.kind, name="a", depends_on=frozenset({ref}))])

    def test_dangling_dependency(self) -> None:
        ghost = _spec("ghost")
        with pytest.raises(PlanError, match="not in the plan"):
            topological_order([_spec("app", ghost)])

    def test_duplicate_ref(self) -> None:
        with pytest.raises(PlanError, match="Duplicate"):
            topological_order([_spec("a"), _spec("a")])


class TestDependentsMap:
    def test_reverse_edges(self) -> None:
        ns = _spec("ns")
        db = _spec("db", ns)
        app = _spec("app", ns, db)

        dependents = dependents_map([ns, db, app])

        assert dependents[ns.ref] == {db.ref, app.ref}
        assert dependents[db.ref] == {app.ref}
        assert dependents[app.ref] == set()
