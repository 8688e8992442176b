"""Concrete probe targets and the predicates that judge their snapshots.

Snapshots are plain dicts so predicates stay independent of client types.
"""

from __future__ import annotations

import asyncio
from typing import Any

from stackdeploy.prober.readiness import Predicate, ProbeTarget


class NamespaceTarget(ProbeTarget):
    """Status of a namespace: ``{"phase": "Active"}``."""

    def __init__(self, core_v1: Any, namespace: str) -> None:
        self._core_v1 = core_v1
        self._namespace = namespace

    @property
    def name(self) -> str:
        return f"Namespace/{self._namespace}"

    async def fetch(self) -> dict[str, Any]:
        ns = await self._core_v1.read_namespace(name=self._namespace)
        phase = ns.status.phase if ns.status is not None else None
        return {"phase": phase}


class ReleasePodsTarget(ProbeTarget):
    """Pods belonging to a Helm release, selected by ``app.kubernetes.io/instance``."""

    def __init__(self, core_v1: Any, namespace: str, release: str) -> None:
        self._core_v1 = core_v1
        self._namespace = namespace
        self._release = release

    @property
    def name(self) -> str:
        return f"HelmRelease/{self._namespace}/{self._release}"

    async def fetch(self) -> dict[str, Any]:
        pod_list = await self._core_v1.list_namespaced_pod(
            namespace=self._namespace,
            label_selector=f"app.kubernetes.io/instance={self._release}",
        )
        pods = []
        for pod in pod_list.items:
            conditions = (pod.status.conditions if pod.status is not None else None) or []
            ready = any(c.type == "Ready" and c.status == "True" for c in conditions)
            pods.append(
                {
                    "name": pod.metadata.name,
                    "phase": pod.status.phase if pod.status is not None else None,
                    "ready": ready,
                }
            )
        return {"pods": pods}


class HttpStatusTarget(ProbeTarget):
    """JSON status endpoint, e.g. SonarQube's ``/api/system/status``."""

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        if not url:
            raise ValueError("Status url must not be empty")
        self._url = url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self._url

    async def fetch(self) -> dict[str, Any]:
        import httpx

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(self._url)
            response.raise_for_status()
            return dict(response.json())


class CompositeTarget(ProbeTarget):
    """Fetches several targets concurrently; snapshot maps target name to its snapshot."""

    def __init__(self, *targets: ProbeTarget) -> None:
        if not targets:
            raise ValueError("CompositeTarget needs at least one target")
        self._targets = targets

    @property
    def name(self) -> str:
        return "+".join(t.name for t in self._targets)

    async def fetch(self) -> dict[str, Any]:
        snapshots = await asyncio.gather(*(t.fetch() for t in self._targets))
        return {t.name: snap for t, snap in zip(self._targets, snapshots, strict=True)}


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def namespace_active(snapshot: dict[str, Any]) -> bool:
    return snapshot.get("phase") == "Active"


def pods_ready(snapshot: dict[str, Any]) -> bool:
    """True when the release has at least one pod and every pod is Ready."""
    pods = snapshot.get("pods") or []
    return bool(pods) and all(p.get("ready") for p in pods)


def status_up(snapshot: dict[str, Any]) -> bool:
    return snapshot.get("status") == "UP"


def all_of(checks: dict[str, Predicate]) -> Predicate:
    """Combine per-target predicates for a CompositeTarget snapshot."""

    def _predicate(snapshot: dict[str, Any]) -> bool:
        return all(check(snapshot[name]) for name, check in checks.items())

    return _predicate
