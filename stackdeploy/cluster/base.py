"""Cluster API abstraction: one driver per resource kind.

The executor never talks to Kubernetes or Helm directly. It asks the
driver registered for a spec's kind to observe, apply, delete and describe
readiness, and compares desired against observed state itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from stackdeploy.errors import ApplyConflict, PlanError
from stackdeploy.models.resources import ResourceSpec
from stackdeploy.prober.readiness import ReadinessCheck


class ResourceDriver(ABC):
    """Realizes specs of a single kind against the cluster.

    ``immutable_fields`` name desired-state keys that cannot change once the
    object exists; a mismatch on one of them is an ApplyConflict rather than
    an update.
    """

    immutable_fields: tuple[str, ...] = ()

    @property
    @abstractmethod
    def kind(self) -> str:
        """Resource kind this driver handles."""

    @abstractmethod
    async def observe(self, spec: ResourceSpec) -> dict[str, Any] | None:
        """Return observed attributes, or None if the object does not exist."""

    @abstractmethod
    async def apply(self, spec: ResourceSpec) -> dict[str, Any]:
        """Create or update the object and return its observed attributes."""

    @abstractmethod
    async def delete(self, spec: ResourceSpec) -> None:
        """Delete the object. Deleting an absent object succeeds."""

    def readiness(self, spec: ResourceSpec) -> ReadinessCheck | None:
        """Readiness check for *spec*, or None if the kind is ready once applied."""
        return None

    def matches(self, spec: ResourceSpec, observed: dict[str, Any]) -> bool:
        """True when every desired key is present in *observed* with an equal value."""
        return all(
            key in observed and observed[key] == value for key, value in spec.desired_state.items()
        )

    def check_conflict(self, spec: ResourceSpec, observed: dict[str, Any]) -> None:
        """Raise ApplyConflict if an immutable field differs."""
        for field in self.immutable_fields:
            if field not in spec.desired_state or field not in observed:
                continue
            desired = self.normalize(field, spec.desired_state[field])
            if desired != observed[field]:
                raise ApplyConflict(spec.ref, field, desired, observed[field])

    def normalize(self, field: str, value: Any) -> Any:
        """Map a desired value onto the representation ``observe`` reports."""
        return value


class ClusterAPI:
    """Registry of drivers keyed by kind, plus the connection lifecycle."""

    def __init__(
        self,
        drivers: list[ResourceDriver] | None = None,
        close_fn: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._drivers: dict[str, ResourceDriver] = {}
        self._close_fn = close_fn
        for driver in drivers or []:
            self.register(driver)

    def register(self, driver: ResourceDriver) -> None:
        self._drivers[driver.kind] = driver

    def driver_for(self, kind: str) -> ResourceDriver:
        try:
            return self._drivers[kind]
        except KeyError:
            raise PlanError(f"No driver registered for kind '{kind}'") from None

    def supports(self, kind: str) -> bool:
        return kind in self._drivers

    async def close(self) -> None:
        if self._close_fn is not None:
            await self._close_fn()
