"""Kubernetes-backed drivers: namespaces and secrets through kubernetes-asyncio,
Helm releases through the helm binary.

Startup order mirrors any in-cluster tool: try the service-account config
first, fall back to the local kubeconfig.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from stackdeploy.cluster.base import ClusterAPI, ResourceDriver
from stackdeploy.cluster.helm import HelmClient, HelmCommandError, split_chart
from stackdeploy.errors import ClusterError, ClusterUnavailable
from stackdeploy.models.resources import ResourceKind, ResourceSpec
from stackdeploy.observability.logging import get_logger
from stackdeploy.prober.readiness import ReadinessCheck
from stackdeploy.prober.targets import (
    CompositeTarget,
    HttpStatusTarget,
    NamespaceTarget,
    ReleasePodsTarget,
    all_of,
    namespace_active,
    pods_ready,
    status_up,
)

if TYPE_CHECKING:
    from stackdeploy.credentials.broker import CredentialBroker
    from stackdeploy.models.config import ProberConfig

_log = get_logger("cluster.kubernetes")

FINGERPRINT_ANNOTATION = "stackdeploy.io/credentials-fingerprint"
MANAGED_BY_LABEL = {"app.kubernetes.io/managed-by": "stackdeploy"}


def _not_found(exc: ApiException) -> bool:
    return getattr(exc, "status", None) == 404


class NamespaceDriver(ResourceDriver):
    """Namespaces. Desired state: ``{"labels": {...}}``; ready when phase is Active."""

    def __init__(self, core_v1: Any, readiness_timeout: float) -> None:
        self._core_v1 = core_v1
        self._readiness_timeout = readiness_timeout

    @property
    def kind(self) -> str:
        return ResourceKind.NAMESPACE

    async def observe(self, spec: ResourceSpec) -> dict[str, Any] | None:
        try:
            ns = await self._core_v1.read_namespace(name=spec.name)
        except ApiException as exc:
            if _not_found(exc):
                return None
            raise ClusterError(spec.ref, "observe", str(exc.reason)) from exc
        return {
            "labels": dict(ns.metadata.labels or {}),
            "phase": ns.status.phase if ns.status is not None else None,
        }

    async def apply(self, spec: ResourceSpec) -> dict[str, Any]:
        labels = dict(spec.desired_state.get("labels", {}))
        try:
            if await self.observe(spec) is None:
                body = k8s_client.V1Namespace(metadata=k8s_client.V1ObjectMeta(name=spec.name, labels=labels))
                await self._core_v1.create_namespace(body=body)
                _log.info("namespace_created", namespace=spec.name)
            else:
                await self._core_v1.patch_namespace(name=spec.name, body={"metadata": {"labels": labels}})
                _log.info("namespace_patched", namespace=spec.name)
        except ApiException as exc:
            raise ClusterError(spec.ref, "apply", str(exc.reason)) from exc
        observed = await self.observe(spec)
        return observed or {}

    async def delete(self, spec: ResourceSpec) -> None:
        try:
            await self._core_v1.delete_namespace(name=spec.name)
        except ApiException as exc:
            if _not_found(exc):
                return
            raise ClusterError(spec.ref, "delete", str(exc.reason)) from exc
        _log.info("namespace_deleted", namespace=spec.name)

    def readiness(self, spec: ResourceSpec) -> ReadinessCheck | None:
        return ReadinessCheck(
            target=NamespaceTarget(self._core_v1, spec.name),
            predicate=namespace_active,
            timeout=self._readiness_timeout,
        )

    def matches(self, spec: ResourceSpec, observed: dict[str, Any]) -> bool:
        # A Terminating namespace still carries its labels.
        if observed.get("phase") != "Active":
            return False
        desired = spec.desired_state.get("labels", {})
        labels = observed.get("labels", {})
        return all(labels.get(k) == v for k, v in desired.items())


class SecretDriver(ResourceDriver):
    """Opaque secrets carrying brokered credentials.

    Desired state::

        {
            "credentials": {"<secret key>": ("<owner>", "<key>"), ...},
            "consumers": (ResourceRef, ...),
            "fingerprint": "<sha256 of the values>",
        }

    Values are resolved from the broker at apply time and published to every
    consumer; only the fingerprint is compared, so values never reach logs.
    """

    def __init__(self, core_v1: Any, broker: CredentialBroker) -> None:
        self._core_v1 = core_v1
        self._broker = broker

    @property
    def kind(self) -> str:
        return ResourceKind.SECRET

    async def observe(self, spec: ResourceSpec) -> dict[str, Any] | None:
        try:
            secret = await self._core_v1.read_namespaced_secret(name=spec.name, namespace=spec.namespace)
        except ApiException as exc:
            if _not_found(exc):
                return None
            raise ClusterError(spec.ref, "observe", str(exc.reason)) from exc
        annotations = secret.metadata.annotations or {}
        return {
            "fingerprint": annotations.get(FINGERPRINT_ANNOTATION, ""),
            "keys": sorted((secret.data or {}).keys()),
        }

    async def read_data(self, namespace: str, name: str) -> dict[str, str] | None:
        """Decoded secret data, or None if the secret does not exist."""
        try:
            secret = await self._core_v1.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as exc:
            if _not_found(exc):
                return None
            raise
        return {k: base64.b64decode(v).decode() for k, v in (secret.data or {}).items()}

    async def apply(self, spec: ResourceSpec) -> dict[str, Any]:
        string_data: dict[str, str] = {}
        for secret_key, (owner, key) in spec.desired_state.get("credentials", {}).items():
            credential = self._broker.get(owner, key)
            for consumer in spec.desired_state.get("consumers", ()):
                credential = self._broker.publish(credential, consumer)
            string_data[secret_key] = credential.value

        body = k8s_client.V1Secret(
            metadata=k8s_client.V1ObjectMeta(
                name=spec.name,
                namespace=spec.namespace,
                labels=dict(MANAGED_BY_LABEL),
                annotations={FINGERPRINT_ANNOTATION: spec.desired_state.get("fingerprint", "")},
            ),
            type="Opaque",
            string_data=string_data,
        )
        try:
            if await self.observe(spec) is None:
                await self._core_v1.create_namespaced_secret(namespace=spec.namespace, body=body)
            else:
                await self._core_v1.replace_namespaced_secret(name=spec.name, namespace=spec.namespace, body=body)
        except ApiException as exc:
            raise ClusterError(spec.ref, "apply", str(exc.reason)) from exc
        _log.info("secret_applied", secret=str(spec.ref), keys=sorted(string_data))
        return {"fingerprint": spec.desired_state.get("fingerprint", ""), "keys": sorted(string_data)}

    async def delete(self, spec: ResourceSpec) -> None:
        try:
            await self._core_v1.delete_namespaced_secret(name=spec.name, namespace=spec.namespace)
        except ApiException as exc:
            if _not_found(exc):
                return
            raise ClusterError(spec.ref, "delete", str(exc.reason)) from exc

    def matches(self, spec: ResourceSpec, observed: dict[str, Any]) -> bool:
        return observed.get("fingerprint") == spec.desired_state.get("fingerprint")


class HelmReleaseDriver(ResourceDriver):
    """Helm chart releases.

    Desired state::

        {
            "chart": "bitnami/postgresql",
            "repo_url": "https://charts.bitnami.com/bitnami",
            "version": "",            # empty = latest
            "values": {...},
            "status_url": "",         # optional HTTP readiness endpoint
        }

    The chart name is immutable: pointing an existing release at a different
    chart is an ApplyConflict.
    """

    immutable_fields = ("chart",)

    def __init__(self, core_v1: Any, helm: HelmClient, readiness_timeout: float) -> None:
        self._core_v1 = core_v1
        self._helm = helm
        self._readiness_timeout = readiness_timeout

    @property
    def kind(self) -> str:
        return ResourceKind.HELM_RELEASE

    async def observe(self, spec: ResourceSpec) -> dict[str, Any] | None:
        try:
            row = await self._helm.get_release(spec.name, spec.namespace)
            if row is None:
                return None
            values = await self._helm.get_values(spec.name, spec.namespace)
        except HelmCommandError as exc:
            raise ClusterError(spec.ref, "observe", str(exc)) from exc
        chart, version = split_chart(str(row.get("chart", "")))
        return {
            "chart": chart,
            "version": version,
            "values": values,
            "status": row.get("status", ""),
            "revision": row.get("revision", ""),
        }

    async def apply(self, spec: ResourceSpec) -> dict[str, Any]:
        desired = spec.desired_state
        chart = str(desired["chart"])
        repo_url = str(desired.get("repo_url", ""))
        try:
            if repo_url and "/" in chart and not chart.startswith(("oci://", "/", ".")):
                await self._helm.repo_add(chart.split("/", 1)[0], repo_url)
            await self._helm.upgrade_install(
                release=spec.name,
                chart=chart,
                namespace=spec.namespace,
                values=dict(desired.get("values", {})),
                version=str(desired.get("version", "")),
            )
        except HelmCommandError as exc:
            raise ClusterError(spec.ref, "apply", str(exc)) from exc

        observed = await self.observe(spec)
        if observed is None:
            raise ClusterError(spec.ref, "apply", "release not listed after install")
        if observed["status"] != "deployed":
            raise ClusterError(spec.ref, "apply", f"release status is '{observed['status']}'")
        _log.info("release_applied", release=str(spec.ref), revision=observed["revision"])
        return observed

    async def delete(self, spec: ResourceSpec) -> None:
        try:
            removed = await self._helm.uninstall(spec.name, spec.namespace)
        except HelmCommandError as exc:
            raise ClusterError(spec.ref, "delete", str(exc)) from exc
        if removed:
            _log.info("release_uninstalled", release=str(spec.ref))

    def readiness(self, spec: ResourceSpec) -> ReadinessCheck | None:
        pods = ReleasePodsTarget(self._core_v1, spec.namespace, spec.name)
        status_url = str(spec.desired_state.get("status_url", ""))
        if not status_url:
            return ReadinessCheck(target=pods, predicate=pods_ready, timeout=self._readiness_timeout)
        http = HttpStatusTarget(status_url)
        return ReadinessCheck(
            target=CompositeTarget(pods, http),
            predicate=all_of({pods.name: pods_ready, http.name: status_up}),
            timeout=self._readiness_timeout,
        )

    def matches(self, spec: ResourceSpec, observed: dict[str, Any]) -> bool:
        desired = spec.desired_state
        version = str(desired.get("version", ""))
        return (
            observed.get("status") == "deployed"
            and observed.get("chart") == self.normalize("chart", desired["chart"])
            and (not version or observed.get("version") == version)
            and observed.get("values") == dict(desired.get("values", {}))
        )

    def normalize(self, field: str, value: Any) -> Any:
        if field == "chart":
            return str(value).rstrip("/").rsplit("/", 1)[-1]
        return value


async def connect_cluster(
    broker: CredentialBroker,
    prober: ProberConfig,
    kube_context: str | None = None,
) -> ClusterAPI:
    """Load cluster credentials and build the driver registry."""
    import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]

    try:
        k8s_config.load_incluster_config()
        _log.info("k8s client configured from in-cluster service account")
    except k8s_config.ConfigException:
        try:
            await k8s_config.load_kube_config(context=kube_context)
        except (k8s_config.ConfigException, OSError) as exc:
            raise ClusterUnavailable(f"No usable cluster configuration: {exc}") from exc
        _log.info("k8s client configured from kubeconfig", context=kube_context)

    api_client = k8s_client.ApiClient()
    core_v1 = k8s_client.CoreV1Api(api_client)
    helm = HelmClient(kube_context=kube_context)

    return ClusterAPI(
        drivers=[
            NamespaceDriver(core_v1, readiness_timeout=prober.namespace_timeout),
            SecretDriver(core_v1, broker),
            HelmReleaseDriver(core_v1, helm, readiness_timeout=prober.release_timeout),
        ],
        close_fn=api_client.close,
    )
