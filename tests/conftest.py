"""Shared fixtures for stackdeploy tests.

Provides an in-memory cluster (one fake driver per kind, recording every
call), a controllable clock for the readiness prober, and the four-resource
plan used throughout the executor and orchestrator tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from stackdeploy.cluster.base import ClusterAPI, ResourceDriver
from stackdeploy.errors import ClusterError
from stackdeploy.executor.engine import ResourceGraphExecutor
from stackdeploy.models.resources import ResourceKind, ResourceRef, ResourceSpec, StackPlan
from stackdeploy.prober.readiness import ProbeTarget, ReadinessCheck, ReadinessProber

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when the prober sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# In-memory cluster
# ---------------------------------------------------------------------------


class _ObjectReadyTarget(ProbeTarget):
    def __init__(self, driver: FakeDriver, ref: ResourceRef) -> None:
        self._driver = driver
        self._ref = ref

    @property
    def name(self) -> str:
        return str(self._ref)

    async def fetch(self) -> bool:
        return self._driver.is_ready(self._ref)


class FakeDriver(ResourceDriver):
    """Stores desired state as the observed object.

    Knobs: ``fail_apply`` / ``fail_delete`` refs raise ClusterError,
    ``never_ready`` refs never pass readiness, ``apply_delay`` holds each
    apply open, ``on_apply`` is called with the ref before applying.
    """

    def __init__(self, kind: str, calls: list[tuple[str, ResourceRef]], readiness_timeout: float = 10.0) -> None:
        self._kind = kind
        self.calls = calls
        self.readiness_timeout = readiness_timeout
        self.objects: dict[ResourceRef, dict[str, Any]] = {}
        self.fail_apply: set[ResourceRef] = set()
        self.fail_delete: set[ResourceRef] = set()
        self.never_ready: set[ResourceRef] = set()
        self.apply_delay = 0.0
        self.on_apply: Callable[[ResourceRef], None] | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def kind(self) -> str:
        return self._kind

    async def observe(self, spec: ResourceSpec) -> dict[str, Any] | None:
        self.calls.append(("observe", spec.ref))
        obj = self.objects.get(spec.ref)
        return dict(obj) if obj is not None else None

    async def apply(self, spec: ResourceSpec) -> dict[str, Any]:
        self.calls.append(("apply", spec.ref))
        if self.on_apply is not None:
            self.on_apply(spec.ref)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.apply_delay:
                await asyncio.sleep(self.apply_delay)
            if spec.ref in self.fail_apply:
                raise ClusterError(spec.ref, "apply", "injected failure")
            self.objects[spec.ref] = dict(spec.desired_state)
            return dict(spec.desired_state)
        finally:
            self.in_flight -= 1

    async def delete(self, spec: ResourceSpec) -> None:
        self.calls.append(("delete", spec.ref))
        if spec.ref in self.fail_delete:
            raise ClusterError(spec.ref, "delete", "injected failure")
        self.objects.pop(spec.ref, None)

    def readiness(self, spec: ResourceSpec) -> ReadinessCheck | None:
        return ReadinessCheck(
            target=_ObjectReadyTarget(self, spec.ref),
            predicate=bool,
            timeout=self.readiness_timeout,
        )

    def is_ready(self, ref: ResourceRef) -> bool:
        return ref in self.objects and ref not in self.never_ready


class FakeCluster(ClusterAPI):
    """ClusterAPI backed by FakeDrivers sharing one call log."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ResourceRef]] = []
        self.drivers = {
            kind: FakeDriver(kind, self.calls)
            for kind in (ResourceKind.NAMESPACE, ResourceKind.SECRET, ResourceKind.HELM_RELEASE)
        }
        self.closed = False
        super().__init__(drivers=list(self.drivers.values()))

    def ops(self, operation: str) -> list[ResourceRef]:
        return [ref for op, ref in self.calls if op == operation]

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------


def make_spec(
    kind: str,
    name: str,
    namespace: str = "",
    deps: tuple[ResourceSpec, ...] = (),
    proceed_on_timeout: bool = False,
    **desired: Any,
) -> ResourceSpec:
    return ResourceSpec(
        kind=kind,
        name=name,
        namespace=namespace,
        desired_state=desired,
        depends_on=frozenset(d.ref for d in deps),
        proceed_on_timeout=proceed_on_timeout,
    )


def four_resource_plan(app_proceed_on_timeout: bool = False) -> StackPlan:
    """Namespace -> database -> credential -> application."""
    ns = make_spec(ResourceKind.NAMESPACE, "sonarqube", labels={"team": "qa"})
    db = make_spec(ResourceKind.HELM_RELEASE, "postgresql", "sonarqube", (ns,), chart="postgresql", values={"a": 1})
    cred = make_spec(ResourceKind.SECRET, "sonarqube-credentials", "sonarqube", (db,), fingerprint="f1")
    app = make_spec(
        ResourceKind.HELM_RELEASE,
        "sonarqube",
        "sonarqube",
        (cred,),
        proceed_on_timeout=app_proceed_on_timeout,
        chart="sonarqube",
        values={"b": 2},
    )
    return StackPlan(specs=(ns, db, cred, app))


@pytest.fixture
def spec_factory() -> Callable[..., ResourceSpec]:
    return make_spec


@pytest.fixture
def plan() -> StackPlan:
    return four_resource_plan()


@pytest.fixture
def plan_factory() -> Callable[..., StackPlan]:
    return four_resource_plan


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def prober(clock: FakeClock) -> ReadinessProber:
    return ReadinessProber(clock=clock.time, sleep=clock.sleep)


@pytest.fixture
def executor_factory(cluster: FakeCluster, prober: ReadinessProber) -> Callable[..., ResourceGraphExecutor]:
    def _make(**kwargs: Any) -> ResourceGraphExecutor:
        kwargs.setdefault("poll_interval", 1.0)
        return ResourceGraphExecutor(cluster, prober=prober, **kwargs)

    return _make


@pytest.fixture
def executor(executor_factory: Callable[..., ResourceGraphExecutor]) -> ResourceGraphExecutor:
    return executor_factory()
