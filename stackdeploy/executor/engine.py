"""Resource graph executor.

Applies a StackPlan in dependency order, one asyncio task per resource.
A resource enters Applying only after all of its dependencies are Ready;
independent branches run concurrently, optionally bounded by a semaphore.
Failures never roll anything back: dependents of a failed resource stay
Pending and are reported as blocked, and teardown is an explicit destroy().
"""

from __future__ import annotations

import asyncio
from contextlib import nullcontext
from typing import Any

from stackdeploy.cluster.base import ClusterAPI
from stackdeploy.errors import PartialFailure
from stackdeploy.executor.graph import dependents_map, topological_order
from stackdeploy.executor.state import StateTable
from stackdeploy.models.resources import (
    ResourcePhase,
    ResourceRef,
    ResourceSpec,
    ResourceState,
    StackPlan,
)
from stackdeploy.observability.logging import get_logger
from stackdeploy.observability.metrics import resource_transitions_total
from stackdeploy.prober.readiness import ReadinessProber

_log = get_logger("executor")


class ResourceGraphExecutor:
    """Drives ResourceStates through ``Pending -> Applying -> {Ready | Failed}``.

    Args:
        cluster:           Driver registry for every kind in the plan.
        prober:            Readiness prober used to gate Applying -> Ready.
        poll_interval:     Readiness poll cadence in seconds.
        concurrency_limit: Max resources Applying at once (None = unbounded).
        table:             State table, e.g. restored from a StateStore.
    """

    def __init__(
        self,
        cluster: ClusterAPI,
        prober: ReadinessProber | None = None,
        poll_interval: float = 5.0,
        concurrency_limit: int | None = None,
        table: StateTable | None = None,
    ) -> None:
        if concurrency_limit is not None and concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        self._cluster = cluster
        self._prober = prober or ReadinessProber()
        self._poll_interval = poll_interval
        self._concurrency_limit = concurrency_limit
        self.table = table if table is not None else StateTable()

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply(
        self,
        plan: StackPlan,
        cancel: asyncio.Event | None = None,
    ) -> dict[ResourceRef, ResourceState]:
        """Realize every spec of *plan*.

        Returns the state of every resource when all are Ready; raises
        PartialFailure with succeeded/failed/blocked sets otherwise.
        Setting *cancel* stops new resources from entering Applying while
        letting in-flight ones finish.
        """
        order = topological_order(plan)
        for spec in order:
            self._cluster.driver_for(spec.kind)

        states = {spec.ref: self.table.ensure(spec) for spec in order}
        settled = {spec.ref: asyncio.Event() for spec in order}
        errors: dict[ResourceRef, Exception] = {}
        blocked: set[ResourceRef] = set()
        semaphore = asyncio.Semaphore(self._concurrency_limit) if self._concurrency_limit else None

        async def _run(spec: ResourceSpec) -> None:
            ref = spec.ref
            try:
                for dep in spec.depends_on:
                    await settled[dep].wait()
                phases = self.table.snapshot()
                not_ready = sorted(str(d) for d in spec.depends_on if phases.get(d) is not ResourcePhase.READY)
                if not_ready:
                    blocked.add(ref)
                    _log.warning("resource_blocked", ref=str(ref), waiting_on=not_ready)
                    return
                async with semaphore or nullcontext():
                    started = await self._realize(states[ref], errors, cancel)
                if not started:
                    blocked.add(ref)
            finally:
                settled[ref].set()

        _log.info("apply_started", resources=len(order))
        await asyncio.gather(*(_run(spec) for spec in order))

        failed = set(errors)
        succeeded = {
            ref for ref, state in states.items() if state.phase is ResourcePhase.READY
        } - blocked - failed
        if failed or blocked:
            _log.error(
                "apply_incomplete",
                succeeded=sorted(str(r) for r in succeeded),
                failed=sorted(str(r) for r in failed),
                blocked=sorted(str(r) for r in blocked),
            )
            raise PartialFailure("apply", succeeded, failed, blocked, errors)

        _log.info("apply_complete", resources=len(order))
        return dict(states)

    async def _realize(
        self,
        state: ResourceState,
        errors: dict[ResourceRef, Exception],
        cancel: asyncio.Event | None,
    ) -> bool:
        """Bring one resource to Ready or Failed. Returns False if cancellation kept it out of Applying."""
        ref = state.ref
        async with self.table.lock(ref):
            try:
                return await self._converge(state, cancel)
            except Exception as exc:
                state.error = exc
                errors[ref] = exc
                if state.phase is ResourcePhase.APPLYING:
                    self._transition(state, ResourcePhase.FAILED)
                _log.error("resource_failed", ref=str(ref), error=str(exc), error_type=type(exc).__name__)
                return True

    async def _converge(self, state: ResourceState, cancel: asyncio.Event | None) -> bool:
        spec = state.spec
        ref = spec.ref
        driver = self._cluster.driver_for(spec.kind)

        observed: dict[str, Any] | None = None
        check_error: Exception | None = None
        converged = False
        try:
            observed = await driver.observe(spec)
            converged = observed is not None and driver.matches(spec, observed)
        except Exception as exc:
            check_error = exc

        cancelled = cancel is not None and cancel.is_set()
        # Degraded resources get another readiness check unless the run is stopping.
        recheck = state.degraded and not cancelled
        if converged and state.phase in (ResourcePhase.PENDING, ResourcePhase.READY) and not recheck:
            assert observed is not None
            state.observed_attributes = observed
            if state.phase is ResourcePhase.PENDING:
                self._transition(state, ResourcePhase.READY)
            else:
                _log.debug("resource_unchanged", ref=str(ref))
            return True

        if cancelled:
            _log.info("resource_skipped_cancelled", ref=str(ref))
            return False

        self._transition(state, ResourcePhase.APPLYING)
        if check_error is not None:
            raise check_error
        if observed is not None:
            driver.check_conflict(spec, observed)
        if not converged:
            observed = await driver.apply(spec)
        state.observed_attributes = observed or {}
        await self._gate_readiness(state)
        self._transition(state, ResourcePhase.READY)
        return True

    async def _gate_readiness(self, state: ResourceState) -> None:
        spec = state.spec
        check = self._cluster.driver_for(spec.kind).readiness(spec)
        if check is None:
            return
        result = await self._prober.wait_ready(
            check.target,
            check.predicate,
            timeout=check.timeout,
            poll_interval=min(self._poll_interval, check.timeout / 2),
        )
        if result.ready:
            state.degraded = False
            return
        if spec.proceed_on_timeout:
            state.degraded = True
            _log.warning("resource_ready_degraded", ref=str(spec.ref), timeout=check.timeout)
            return
        result.raise_for_timeout()

    def _transition(self, state: ResourceState, phase: ResourcePhase) -> None:
        state.transition(phase)
        resource_transitions_total.labels(kind=state.spec.kind, phase=phase.value).inc()
        _log.info("resource_transition", ref=str(state.ref), phase=phase.value)

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def destroy(self, plan: StackPlan, force: bool = False) -> list[ResourceRef]:
        """Tear down *plan* in reverse dependency order.

        A resource is deleted only after every resource depending on it was
        deleted; a failed deletion blocks the resources it depends on but not
        independent branches. Resources that never entered the graph are
        skipped without touching the cluster unless *force* is set.

        Returns the refs torn down, in the order they went.
        """
        order = topological_order(plan)
        dependents = dependents_map(order)
        present = {spec.ref for spec in order if force or spec.ref in self.table}
        if not present:
            _log.info("destroy_nothing_to_do")
            return []
        for spec in order:
            if spec.ref in present:
                self._cluster.driver_for(spec.kind)

        done = {spec.ref: asyncio.Event() for spec in order}
        torn_down: list[ResourceRef] = []
        errors: dict[ResourceRef, Exception] = {}
        blocked: set[ResourceRef] = set()

        async def _run(spec: ResourceSpec) -> None:
            ref = spec.ref
            try:
                for dependent in dependents[ref]:
                    await done[dependent].wait()
                stuck = sorted(str(d) for d in dependents[ref] if d in errors or d in blocked)
                if stuck:
                    blocked.add(ref)
                    _log.warning("teardown_blocked", ref=str(ref), dependents=stuck)
                    return
                if ref not in present:
                    return
                async with self.table.lock(ref):
                    try:
                        await self._cluster.driver_for(spec.kind).delete(spec)
                    except Exception as exc:
                        errors[ref] = exc
                        state = self.table.get(ref)
                        if state is not None:
                            state.error = exc
                        _log.error("teardown_failed", ref=str(ref), error=str(exc))
                        return
                self.table.remove(ref)
                torn_down.append(ref)
                _log.info("resource_destroyed", ref=str(ref))
            finally:
                done[ref].set()

        _log.info("destroy_started", resources=len(present), force=force)
        await asyncio.gather(*(_run(spec) for spec in reversed(order)))

        if errors or blocked:
            raise PartialFailure("destroy", torn_down, errors, blocked, errors)
        _log.info("destroy_complete", resources=len(torn_down))
        return torn_down
