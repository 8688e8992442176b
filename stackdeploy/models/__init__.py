"""Core data structures for stackdeploy."""

from stackdeploy.models.config import (
    ApplicationConfig,
    DatabaseConfig,
    ExecutorConfig,
    LogConfig,
    ProberConfig,
    StackConfig,
)
from stackdeploy.models.resources import (
    AccessInfo,
    Credential,
    ResourceKind,
    ResourcePhase,
    ResourceRef,
    ResourceSpec,
    ResourceState,
    StackPlan,
)

__all__ = [
    "AccessInfo",
    "ApplicationConfig",
    "Credential",
    "DatabaseConfig",
    "ExecutorConfig",
    "LogConfig",
    "ProberConfig",
    "ResourceKind",
    "ResourcePhase",
    "ResourceRef",
    "ResourceSpec",
    "ResourceState",
    "StackConfig",
    "StackPlan",
]
