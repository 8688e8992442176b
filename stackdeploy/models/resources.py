"""Resource, state and plan data structures."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from stackdeploy.errors import InvalidTransition


class ResourceKind(StrEnum):
    """Kinds of infrastructure objects the executor knows how to realize."""

    NAMESPACE = "Namespace"
    SECRET = "Secret"
    HELM_RELEASE = "HelmRelease"


class ResourcePhase(StrEnum):
    """Lifecycle phase of one resource within a deployment."""

    PENDING = "pending"
    APPLYING = "applying"
    READY = "ready"
    FAILED = "failed"


# Pending -> Ready covers resources already converged; Ready/Failed -> Applying
# only happens on a later invocation (drift repair or retry).
_ALLOWED_TRANSITIONS: dict[ResourcePhase, frozenset[ResourcePhase]] = {
    ResourcePhase.PENDING: frozenset({ResourcePhase.APPLYING, ResourcePhase.READY}),
    ResourcePhase.APPLYING: frozenset({ResourcePhase.READY, ResourcePhase.FAILED}),
    ResourcePhase.READY: frozenset({ResourcePhase.APPLYING}),
    ResourcePhase.FAILED: frozenset({ResourcePhase.APPLYING}),
}


@dataclass(frozen=True, order=True)
class ResourceRef:
    """Identity of a resource. Cluster-scoped kinds use an empty namespace."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class ResourceSpec:
    """Declarative desired configuration of one infrastructure object.

    Specs are identified by their ``ref``; ``desired_state`` takes no part in
    equality and is kept out of ``repr`` because it may hold credential
    material.
    """

    kind: str
    name: str
    namespace: str = ""
    desired_state: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)
    depends_on: frozenset[ResourceRef] = frozenset()
    proceed_on_timeout: bool = False

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(kind=self.kind, namespace=self.namespace, name=self.name)


@dataclass
class ResourceState:
    """Observed runtime status of one resource, owned by the executor."""

    spec: ResourceSpec
    phase: ResourcePhase = ResourcePhase.PENDING
    observed_attributes: dict[str, Any] = field(default_factory=dict, repr=False)
    error: Exception | None = None
    degraded: bool = False
    history: list[ResourcePhase] = field(default_factory=list)

    @property
    def ref(self) -> ResourceRef:
        return self.spec.ref

    def transition(self, target: ResourcePhase) -> None:
        """Move to *target*, raising InvalidTransition on an illegal edge."""
        if target not in _ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransition(self.ref, self.phase, target)
        self.history.append(target)
        self.phase = target
        if target is not ResourcePhase.FAILED:
            self.error = None


@dataclass(frozen=True)
class StackPlan:
    """Ordered, immutable sequence of specs for one deployment invocation."""

    specs: tuple[ResourceSpec, ...] = ()

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.specs)

    def __len__(self) -> int:
        return len(self.specs)

    @property
    def refs(self) -> tuple[ResourceRef, ...]:
        return tuple(spec.ref for spec in self.specs)

    def get(self, ref: ResourceRef) -> ResourceSpec:
        for spec in self.specs:
            if spec.ref == ref:
                return spec
        raise KeyError(str(ref))


@dataclass(frozen=True)
class Credential:
    """Secret material one component needs to reach another."""

    owner: str
    key: str
    value: str = field(repr=False)
    consumers: frozenset[ResourceRef] = frozenset()


@dataclass(frozen=True)
class AccessInfo:
    """How to reach a deployed stack."""

    namespace: str
    endpoint_url: str
    credentials_notice: str
