"""Dependency ordering for stack plans."""

from __future__ import annotations

from collections.abc import Iterable
from graphlib import CycleError, TopologicalSorter

from stackdeploy.errors import PlanError
from stackdeploy.models.resources import ResourceRef, ResourceSpec


def _index(specs: Iterable[ResourceSpec]) -> dict[ResourceRef, ResourceSpec]:
    by_ref: dict[ResourceRef, ResourceSpec] = {}
    for spec in specs:
        if spec.ref in by_ref:
            raise PlanError(f"Duplicate resource in plan: {spec.ref}")
        by_ref[spec.ref] = spec
    for spec in by_ref.values():
        missing = sorted(str(dep) for dep in spec.depends_on if dep not in by_ref)
        if missing:
            raise PlanError(f"{spec.ref} depends on resources not in the plan: {', '.join(missing)}")
    return by_ref


def topological_order(specs: Iterable[ResourceSpec]) -> list[ResourceSpec]:
    """Order *specs* so every spec follows all of its dependencies.

    Ties between independent specs keep their plan order, so the result is
    deterministic. Raises PlanError on cycles, duplicates or dangling refs.
    """
    spec_list = list(specs)
    by_ref = _index(spec_list)
    position = {spec.ref: i for i, spec in enumerate(spec_list)}

    sorter: TopologicalSorter[ResourceRef] = TopologicalSorter()
    for spec in spec_list:
        sorter.add(spec.ref, *spec.depends_on)
    try:
        sorter.prepare()
    except CycleError as exc:
        cycle = " -> ".join(str(ref) for ref in exc.args[1])
        raise PlanError(f"Dependency cycle: {cycle}") from exc

    ordered: list[ResourceSpec] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=position.__getitem__)
        for ref in ready:
            ordered.append(by_ref[ref])
            sorter.done(ref)
    return ordered


def dependents_map(specs: Iterable[ResourceSpec]) -> dict[ResourceRef, set[ResourceRef]]:
    """Reverse edges: for each ref, the refs that depend on it directly."""
    by_ref = _index(specs)
    dependents: dict[ResourceRef, set[ResourceRef]] = {ref: set() for ref in by_ref}
    for spec in by_ref.values():
        for dep in spec.depends_on:
            dependents[dep].add(spec.ref)
    return dependents
