"""Stack orchestrator: wires broker, plan and executor for deploy and teardown.

Each invocation builds a fresh StackPlan and executor from the persisted
state file; the orchestrator itself keeps nothing between calls except the
plan it last built.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from stackdeploy.cluster.base import ClusterAPI
from stackdeploy.credentials.broker import CredentialBroker
from stackdeploy.errors import DeploymentError
from stackdeploy.executor.engine import ResourceGraphExecutor
from stackdeploy.executor.state import StateStore, StateTable
from stackdeploy.models.config import StackConfig
from stackdeploy.models.resources import AccessInfo, ResourceKind, ResourceSpec, StackPlan
from stackdeploy.observability.logging import get_logger
from stackdeploy.observability.metrics import operations_total
from stackdeploy.orchestrator.plan import (
    CREDENTIAL_KEYS,
    access_info,
    build_plan,
    issue_credentials,
    publish_secret_consumers,
)
from stackdeploy.prober.readiness import ReadinessProber

_log = get_logger("orchestrator")


class StackOrchestrator:
    """Deploys and tears down the database + application stack."""

    def __init__(
        self,
        cluster: ClusterAPI,
        broker: CredentialBroker,
        state_store: StateStore,
        prober: ReadinessProber | None = None,
    ) -> None:
        self._cluster = cluster
        self._broker = broker
        self._store = state_store
        self._prober = prober
        self.current_plan: StackPlan | None = None

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    async def plan(self, config: StackConfig) -> StackPlan:
        """Restore existing credentials, issue missing ones and build the plan."""
        await self._restore_credentials(config)
        issue_credentials(config, self._broker)
        self.current_plan = build_plan(config, self._broker)
        return self.current_plan

    async def _restore_credentials(self, config: StackConfig) -> None:
        """Seed the broker with values already in use by the cluster.

        The credentials Secret is authoritative. When it does not exist yet
        (e.g. a previous run failed before creating it) the database password
        is taken from the release values so the database keeps the password it
        was initialised with.
        """
        if not self._cluster.supports(ResourceKind.SECRET):
            return
        app = config.application
        secrets_driver: Any = self._cluster.driver_for(ResourceKind.SECRET)
        read_data = getattr(secrets_driver, "read_data", None)
        data = await read_data(app.namespace, app.credentials_secret) if read_data else None
        for secret_key, (owner, key) in CREDENTIAL_KEYS.items():
            if data and data.get(secret_key):
                self._broker.restore(owner, key, data[secret_key])

        if self._broker.has("database", "password") or not self._cluster.supports(ResourceKind.HELM_RELEASE):
            return
        db = config.database
        probe = ResourceSpec(kind=ResourceKind.HELM_RELEASE, name=db.release, namespace=db.namespace)
        observed = await self._cluster.driver_for(ResourceKind.HELM_RELEASE).observe(probe)
        password = ((observed or {}).get("values") or {}).get("auth", {}).get("password")
        if password:
            self._broker.restore("database", "password", password)

    def _executor(self, config: StackConfig, table: StateTable) -> ResourceGraphExecutor:
        return ResourceGraphExecutor(
            self._cluster,
            prober=self._prober or ReadinessProber(error_budget=config.prober.error_budget),
            poll_interval=config.prober.poll_interval,
            concurrency_limit=config.executor.concurrency_limit,
            table=table,
        )

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(self, config: StackConfig, cancel: asyncio.Event | None = None) -> AccessInfo:
        """Bring the whole stack to Ready and return how to reach it.

        Raises DeploymentError wrapping the underlying cause (typically a
        PartialFailure naming the failed and blocked resources).
        """
        start = time.monotonic()
        _log.info("deploy_started", namespace=config.application.namespace)
        try:
            plan = await self.plan(config)
            executor = self._executor(config, StateTable.from_records(self._store.load(), plan))
            try:
                await executor.apply(plan, cancel=cancel)
            finally:
                self._store.save(executor.table.to_records())
            publish_secret_consumers(plan, self._broker)
        except Exception as exc:
            operations_total.labels(operation="deploy", outcome="failure").inc()
            _log.error("deploy_failed", error=str(exc), error_type=type(exc).__name__)
            raise DeploymentError("deploy", exc) from exc

        info = access_info(config)
        operations_total.labels(operation="deploy", outcome="success").inc()
        _log.info(
            "deploy_complete",
            endpoint=info.endpoint_url,
            resources=len(plan),
            duration_s=round(time.monotonic() - start, 2),
        )
        return info

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def teardown(self, config: StackConfig, force: bool = False) -> None:
        """Destroy the stack in reverse dependency order.

        Without recorded state (and without *force*) there is nothing to
        destroy and the call succeeds without touching the cluster.
        """
        try:
            records = self._store.load()
            if not records and not force:
                _log.warning("nothing_to_destroy", state_path=str(self._store.path))
                operations_total.labels(operation="teardown", outcome="noop").inc()
                return

            # Desired state is irrelevant for deletion; credentials only feed fingerprints.
            issue_credentials(config, self._broker)
            plan = self.current_plan = build_plan(config, self._broker)
            executor = self._executor(config, StateTable.from_records(records, plan))
            try:
                torn_down = await executor.destroy(plan, force=force)
            except Exception:
                self._store.save(executor.table.to_records())
                raise
        except Exception as exc:
            operations_total.labels(operation="teardown", outcome="failure").inc()
            _log.error("teardown_failed", error=str(exc), error_type=type(exc).__name__)
            raise DeploymentError("teardown", exc) from exc

        self._store.clear()
        self._broker.revoke_all()
        self.current_plan = None
        operations_total.labels(operation="teardown", outcome="success").inc()
        _log.info("teardown_complete", resources=len(torn_down))
