"""Exception taxonomy for stackdeploy.

Every error that leaves a component carries the identity of the resource it
concerns so that the orchestrator can report it verbatim.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stackdeploy.models.resources import ResourcePhase, ResourceRef


class StackDeployError(Exception):
    """Base exception for this package."""


class ConfigError(StackDeployError):
    """Raised when a configuration value is missing or malformed."""


class PlanError(StackDeployError):
    """Raised when a plan has a dependency cycle or a dangling reference."""


class StateError(StackDeployError):
    """Raised when the persisted state file cannot be read."""


class ClusterUnavailable(StackDeployError):
    """Raised when no cluster connection can be configured."""


class ProbeTimedOut(StackDeployError):
    """Raised by callers that treat a readiness timeout as fatal."""

    def __init__(self, target: str, timeout: float, attempts: int) -> None:
        super().__init__(f"{target} not ready after {timeout:g}s ({attempts} attempts)")
        self.target = target
        self.timeout = timeout
        self.attempts = attempts


class ProbeError(StackDeployError):
    """Raised when status fetches keep failing past the prober's error budget."""

    def __init__(self, target: str, errors: int, cause: Exception) -> None:
        super().__init__(f"{target}: {errors} consecutive fetch errors, last: {cause}")
        self.target = target
        self.errors = errors
        self.cause = cause


class CredentialNotFound(StackDeployError):
    """Raised when a credential is published or looked up before being issued."""

    def __init__(self, owner: str, key: str) -> None:
        super().__init__(f"Credential not issued: {owner}/{key}")
        self.owner = owner
        self.key = key


class InvalidTransition(StackDeployError):
    """Raised when a ResourceState is moved along an edge the state machine forbids."""

    def __init__(self, ref: ResourceRef, current: ResourcePhase, target: ResourcePhase) -> None:
        super().__init__(f"{ref}: illegal transition {current} -> {target}")
        self.ref = ref
        self.current = current
        self.target = target


class ClusterError(StackDeployError):
    """Raised by a cluster driver when an underlying call fails."""

    def __init__(self, ref: ResourceRef, operation: str, detail: str) -> None:
        super().__init__(f"{ref}: {operation} failed: {detail}")
        self.ref = ref
        self.operation = operation
        self.detail = detail


class ApplyConflict(StackDeployError):
    """Raised when observed state differs from desired state on a field that cannot be reconciled."""

    def __init__(self, ref: ResourceRef, field: str, desired: Any, observed: Any) -> None:
        super().__init__(
            f"{ref}: field '{field}' is immutable (desired={desired!r}, observed={observed!r})"
        )
        self.ref = ref
        self.field = field
        self.desired = desired
        self.observed = observed


class PartialFailure(StackDeployError):
    """Raised when some resources of a plan did not reach their target phase.

    ``succeeded`` reached the target, ``failed`` hit an error and ``blocked``
    were never attempted because a dependency (or dependent, on destroy)
    did not make it, or because the run was cancelled.
    """

    def __init__(
        self,
        operation: str,
        succeeded: Iterable[ResourceRef],
        failed: Iterable[ResourceRef],
        blocked: Iterable[ResourceRef],
        errors: Mapping[ResourceRef, Exception] | None = None,
    ) -> None:
        self.operation = operation
        self.succeeded = frozenset(succeeded)
        self.failed = frozenset(failed)
        self.blocked = frozenset(blocked)
        self.errors = dict(errors or {})
        super().__init__(self._summary())

    def _summary(self) -> str:
        failed = ", ".join(sorted(str(ref) for ref in self.failed)) or "-"
        blocked = ", ".join(sorted(str(ref) for ref in self.blocked)) or "-"
        return f"{self.operation} incomplete: failed=[{failed}] blocked=[{blocked}]"


class DeploymentError(StackDeployError):
    """Raised by the orchestrator when deploy or teardown does not complete."""

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause
