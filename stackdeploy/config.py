"""Configuration loading from environment variables.

Every parameter is read from ``STACKDEPLOY_<KEY>``; absent keys take the
defaults declared on the dataclasses in ``stackdeploy.models.config``.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

from stackdeploy.errors import ConfigError
from stackdeploy.models.config import (
    ApplicationConfig,
    DatabaseConfig,
    ExecutorConfig,
    LogConfig,
    ProberConfig,
    StackConfig,
)

_PREFIX = "STACKDEPLOY_"
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")
_QUANTITY = re.compile(r"^[0-9]+(\.[0-9]+)?(Ki|Mi|Gi|Ti|Pi|K|M|G|T|P)?$")
_NODE_PORT_MIN = 30000
_NODE_PORT_MAX = 32767


def _env(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(f"{_PREFIX}{key}", default)


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    val = _env(env, key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(
    env: Mapping[str, str],
    key: str,
    default: int,
    min_val: int | None = None,
    max_val: int | None = None,
) -> int:
    raw = _env(env, key, str(default))
    try:
        val = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{_PREFIX}{key} must be an integer, got {raw!r}") from exc
    if (min_val is not None and val < min_val) or (max_val is not None and val > max_val):
        raise ConfigError(f"{_PREFIX}{key}={val} outside [{min_val}, {max_val}]")
    return val


def _env_optional_int(env: Mapping[str, str], key: str) -> int | None:
    if not _env(env, key):
        return None
    return _env_int(env, key, 0, min_val=1)


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _env(env, key, str(default))
    try:
        val = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{_PREFIX}{key} must be a number, got {raw!r}") from exc
    if val <= 0:
        raise ConfigError(f"{_PREFIX}{key} must be positive, got {val}")
    return val


def _validate_name(key: str, value: str) -> str:
    if not _DNS_LABEL.match(value):
        raise ConfigError(f"{_PREFIX}{key}: invalid Kubernetes name {value!r}")
    return value


def _validate_quantity(key: str, value: str) -> str:
    if not _QUANTITY.match(value):
        raise ConfigError(f"{_PREFIX}{key}: invalid storage quantity {value!r}")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ConfigError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ConfigError(f"Invalid log format: {value}. Must be json or console")
    return value.lower()


def load_config(environ: Mapping[str, str] | None = None) -> StackConfig:
    """Load configuration from STACKDEPLOY_* variables (``os.environ`` by default)."""
    env = os.environ if environ is None else environ

    database = DatabaseConfig(
        namespace=_validate_name("DB_NAMESPACE", _env(env, "DB_NAMESPACE", "sonarqube")),
        release=_validate_name("DB_RELEASE", _env(env, "DB_RELEASE", "postgresql")),
        chart=_env(env, "DB_CHART", "bitnami/postgresql"),
        repo_url=_env(env, "DB_REPO_URL", "https://charts.bitnami.com/bitnami"),
        version=_env(env, "DB_CHART_VERSION"),
        database=_env(env, "DB_NAME", "sonarqube"),
        username=_env(env, "DB_USERNAME", "sonarqube"),
        password=_env(env, "DB_PASSWORD"),
        persistence_size=_validate_quantity(
            "DB_PERSISTENCE_SIZE", _env(env, "DB_PERSISTENCE_SIZE", "8Gi")
        ),
        port=_env_int(env, "DB_PORT", 5432, min_val=1, max_val=65535),
    )
    application = ApplicationConfig(
        namespace=_validate_name("NAMESPACE", _env(env, "NAMESPACE", "sonarqube")),
        release=_validate_name("APP_RELEASE", _env(env, "APP_RELEASE", "sonarqube")),
        chart=_env(env, "APP_CHART", "sonarqube/sonarqube"),
        repo_url=_env(env, "APP_REPO_URL", "https://SonarSource.github.io/helm-chart-sonarqube"),
        version=_env(env, "APP_CHART_VERSION"),
        credentials_secret=_validate_name(
            "CREDENTIALS_SECRET", _env(env, "CREDENTIALS_SECRET", "sonarqube-credentials")
        ),
        ingress_enabled=_env_bool(env, "INGRESS_ENABLED", True),
        ingress_host=_env(env, "INGRESS_HOST", "sonarqube.local"),
        ingress_class=_env(env, "INGRESS_CLASS", "nginx"),
        persistence_size=_validate_quantity(
            "APP_PERSISTENCE_SIZE", _env(env, "APP_PERSISTENCE_SIZE", "5Gi")
        ),
        node_port=_env_int(env, "NODE_PORT", 30900, min_val=_NODE_PORT_MIN, max_val=_NODE_PORT_MAX),
        node_address=_env(env, "NODE_ADDRESS", "127.0.0.1"),
        http_probe=_env_bool(env, "HTTP_PROBE", False),
        proceed_on_timeout=_env_bool(env, "APP_PROCEED_ON_TIMEOUT", False),
    )
    prober = ProberConfig(
        namespace_timeout=_env_float(env, "NAMESPACE_TIMEOUT", 60.0),
        release_timeout=_env_float(env, "RELEASE_TIMEOUT", 600.0),
        poll_interval=_env_float(env, "POLL_INTERVAL", 5.0),
        error_budget=_env_optional_int(env, "PROBE_ERROR_BUDGET"),
    )
    if prober.poll_interval >= min(prober.namespace_timeout, prober.release_timeout):
        raise ConfigError("STACKDEPLOY_POLL_INTERVAL must be shorter than every readiness timeout")

    return StackConfig(
        database=database,
        application=application,
        prober=prober,
        executor=ExecutorConfig(
            concurrency_limit=_env_optional_int(env, "CONCURRENCY_LIMIT"),
            state_path=_env(env, "STATE_PATH", ".stackdeploy/state.json"),
        ),
        log=LogConfig(
            level=_validate_log_level(_env(env, "LOG_LEVEL", "info")),
            format=_validate_log_format(_env(env, "LOG_FORMAT", "json")),
        ),
    )
