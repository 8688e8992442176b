"""StackPlan construction from configuration.

Dependency chain::

    Namespace -> HelmRelease(database) -> Secret(credentials) -> HelmRelease(application)

The credentials Secret also depends on the application namespace. When both
components share a namespace there is a single Namespace spec.
"""

from __future__ import annotations

from typing import Any

from stackdeploy.credentials.broker import CredentialBroker
from stackdeploy.models.config import ApplicationConfig, DatabaseConfig, StackConfig
from stackdeploy.models.resources import (
    AccessInfo,
    ResourceKind,
    ResourceRef,
    ResourceSpec,
    StackPlan,
)

# Secret key -> (owner, key) in the broker.
CREDENTIAL_KEYS: dict[str, tuple[str, str]] = {
    "jdbc-password": ("database", "password"),
    "monitoring-passcode": ("application", "monitoring-passcode"),
}

DEFAULT_CREDENTIALS_NOTICE = (
    "Username: admin / Password: admin "
    "(you will be prompted to change the password on first login)"
)


def chart_fullname(release: str, chart_name: str) -> str:
    """Object name the charts derive from a release (Helm's conventional fullname)."""
    return release if chart_name in release else f"{release}-{chart_name}"


def database_service_host(db: DatabaseConfig) -> str:
    """In-cluster DNS name of the PostgreSQL service."""
    return f"{chart_fullname(db.release, 'postgresql')}.{db.namespace}.svc.cluster.local"


def endpoint_url(app: ApplicationConfig) -> str:
    if app.ingress_enabled and app.ingress_host:
        return f"http://{app.ingress_host}/"
    return f"http://{app.node_address}:{app.node_port}/"


def access_info(config: StackConfig) -> AccessInfo:
    return AccessInfo(
        namespace=config.application.namespace,
        endpoint_url=endpoint_url(config.application),
        credentials_notice=DEFAULT_CREDENTIALS_NOTICE,
    )


def _namespace_spec(name: str, stack: str) -> ResourceSpec:
    return ResourceSpec(
        kind=ResourceKind.NAMESPACE,
        name=name,
        desired_state={
            "labels": {
                "app.kubernetes.io/managed-by": "stackdeploy",
                "stackdeploy.io/stack": stack,
            }
        },
    )


def _database_values(db: DatabaseConfig, broker: CredentialBroker) -> dict[str, Any]:
    return {
        "auth": {
            "username": db.username,
            "password": broker.get("database", "password").value,
            "database": db.database,
        },
        "primary": {"persistence": {"size": db.persistence_size}},
    }


def _application_values(config: StackConfig) -> dict[str, Any]:
    db = config.database
    app = config.application
    values: dict[str, Any] = {
        "postgresql": {"enabled": False},
        "jdbcOverwrite": {
            "enabled": True,
            "jdbcUrl": f"jdbc:postgresql://{database_service_host(db)}:{db.port}/{db.database}",
            "jdbcUsername": db.username,
            "jdbcSecretName": app.credentials_secret,
            "jdbcSecretPasswordKey": "jdbc-password",
        },
        "monitoringPasscodeSecretName": app.credentials_secret,
        "monitoringPasscodeSecretKey": "monitoring-passcode",
        "persistence": {"enabled": True, "size": app.persistence_size},
        "service": {"type": "NodePort", "nodePort": app.node_port},
        "ingress": {"enabled": app.ingress_enabled},
    }
    if app.ingress_enabled:
        values["ingress"].update(
            {"ingressClassName": app.ingress_class, "hosts": [{"name": app.ingress_host}]}
        )
    return values


def issue_credentials(config: StackConfig, broker: CredentialBroker) -> None:
    """Issue every credential the plan references. Existing ones are kept."""
    broker.issue("database", "password", value=config.database.password or None)
    broker.issue("application", "monitoring-passcode")


def build_plan(config: StackConfig, broker: CredentialBroker) -> StackPlan:
    """Build the StackPlan. Credentials must already be issued."""
    db = config.database
    app = config.application

    namespaces: dict[str, ResourceSpec] = {}
    for ns in (db.namespace, app.namespace):
        namespaces.setdefault(ns, _namespace_spec(ns, app.release))

    database = ResourceSpec(
        kind=ResourceKind.HELM_RELEASE,
        name=db.release,
        namespace=db.namespace,
        desired_state={
            "chart": db.chart,
            "repo_url": db.repo_url,
            "version": db.version,
            "values": _database_values(db, broker),
        },
        depends_on=frozenset({namespaces[db.namespace].ref}),
    )
    broker.publish(broker.get("database", "password"), database.ref)

    application_ref = ResourceRef(kind=ResourceKind.HELM_RELEASE, namespace=app.namespace, name=app.release)
    credential = ResourceSpec(
        kind=ResourceKind.SECRET,
        name=app.credentials_secret,
        namespace=app.namespace,
        desired_state={
            "credentials": dict(CREDENTIAL_KEYS),
            "consumers": (application_ref,),
            "fingerprint": broker.fingerprint(CREDENTIAL_KEYS.values()),
        },
        depends_on=frozenset({database.ref, namespaces[app.namespace].ref}),
    )

    status_url = f"{endpoint_url(app)}api/system/status" if app.http_probe else ""
    application = ResourceSpec(
        kind=ResourceKind.HELM_RELEASE,
        name=app.release,
        namespace=app.namespace,
        desired_state={
            "chart": app.chart,
            "repo_url": app.repo_url,
            "version": app.version,
            "values": _application_values(config),
            "status_url": status_url,
        },
        depends_on=frozenset({credential.ref}),
        proceed_on_timeout=app.proceed_on_timeout,
    )

    return StackPlan(specs=(*namespaces.values(), database, credential, application))


def publish_secret_consumers(plan: StackPlan, broker: CredentialBroker) -> None:
    """Record the consumers of every credential Secret in *plan* on the broker.

    Covers runs where the Secret was already converged and never re-applied.
    """
    for spec in plan:
        if spec.kind != ResourceKind.SECRET:
            continue
        for owner, key in spec.desired_state.get("credentials", {}).values():
            credential = broker.get(owner, key)
            for consumer in spec.desired_state.get("consumers", ()):
                credential = broker.publish(credential, consumer)
