"""Readiness prober package: polling waits and concrete status targets."""

from stackdeploy.prober.readiness import (
    ProbeOutcome,
    ProbeResult,
    ProbeTarget,
    ReadinessCheck,
    ReadinessProber,
    wait_ready,
)
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

__all__ = [
    "CompositeTarget",
    "HttpStatusTarget",
    "NamespaceTarget",
    "ProbeOutcome",
    "ProbeResult",
    "ProbeTarget",
    "ReadinessCheck",
    "ReadinessProber",
    "ReleasePodsTarget",
    "all_of",
    "namespace_active",
    "pods_ready",
    "status_up",
    "wait_ready",
]
