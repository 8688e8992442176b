"""Resource state table and its JSON persistence boundary.

The table is the only shared mutable structure of a deployment. Each
ResourceState is mutated only by the task responsible for its ref, under
that ref's lock; other tasks read phases through ``snapshot()``.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any

from stackdeploy.errors import StateError
from stackdeploy.models.resources import (
    ResourcePhase,
    ResourceRef,
    ResourceSpec,
    ResourceState,
    StackPlan,
)
from stackdeploy.observability.logging import get_logger

_log = get_logger("executor.state")

_SCHEMA_VERSION = 1


class StateTable:
    """ResourceState per ref, in order of creation."""

    def __init__(self) -> None:
        self._states: dict[ResourceRef, ResourceState] = {}
        self._locks: dict[ResourceRef, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, ref: object) -> bool:
        return ref in self._states

    def ensure(self, spec: ResourceSpec) -> ResourceState:
        """Return the state for *spec*, creating a Pending one when it first enters the graph."""
        state = self._states.get(spec.ref)
        if state is None:
            state = ResourceState(spec=spec)
            self._states[spec.ref] = state
        else:
            # A new invocation may carry updated desired state for the same ref.
            state.spec = spec
        return state

    def get(self, ref: ResourceRef) -> ResourceState | None:
        return self._states.get(ref)

    def lock(self, ref: ResourceRef) -> asyncio.Lock:
        lock = self._locks.get(ref)
        if lock is None:
            lock = self._locks[ref] = asyncio.Lock()
        return lock

    def remove(self, ref: ResourceRef) -> None:
        self._states.pop(ref, None)
        self._locks.pop(ref, None)

    def snapshot(self) -> MappingProxyType[ResourceRef, ResourcePhase]:
        """Read-only view of every phase at this instant."""
        return MappingProxyType({ref: state.phase for ref, state in self._states.items()})

    def creation_order(self) -> list[ResourceRef]:
        return list(self._states)

    def to_records(self) -> list[dict[str, Any]]:
        """Serializable records. Observed attributes are left out since they may hold secrets."""
        return [
            {
                "kind": ref.kind,
                "namespace": ref.namespace,
                "name": ref.name,
                "phase": state.phase.value,
                "degraded": state.degraded,
            }
            for ref, state in self._states.items()
        ]

    @classmethod
    def from_records(cls, records: list[dict[str, Any]], plan: StackPlan) -> StateTable:
        """Rebuild a table for *plan* from persisted records.

        Records for refs no longer in the plan are dropped. A resource that
        was mid-apply when the previous run died is restored as Failed so the
        next apply retries it.
        """
        table = cls()
        specs = {spec.ref: spec for spec in plan}
        for record in records:
            ref = ResourceRef(kind=record["kind"], namespace=record.get("namespace", ""), name=record["name"])
            spec = specs.get(ref)
            if spec is None:
                _log.debug("state_record_dropped", ref=str(ref))
                continue
            phase = ResourcePhase(record.get("phase", ResourcePhase.PENDING))
            if phase is ResourcePhase.APPLYING:
                phase = ResourcePhase.FAILED
            table._states[ref] = ResourceState(spec=spec, phase=phase, degraded=bool(record.get("degraded")))
        return table


class StateStore:
    """JSON file holding the records of the last apply/destroy."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> list[dict[str, Any]]:
        if not self.exists():
            return []
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StateError(f"Cannot read state file {self._path}: {exc}") from exc
        version = payload.get("version") if isinstance(payload, dict) else None
        if version != _SCHEMA_VERSION:
            raise StateError(f"Unsupported state file version in {self._path}: {version!r}")
        return list(payload.get("resources", []))

    def save(self, records: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"version": _SCHEMA_VERSION, "resources": records}, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        os.replace(tmp, self._path)
        _log.debug("state_saved", path=str(self._path), resources=len(records))

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
