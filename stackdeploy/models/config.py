"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DatabaseConfig:
    """PostgreSQL Helm release configuration."""

    namespace: str = "sonarqube"
    release: str = "postgresql"
    chart: str = "bitnami/postgresql"
    repo_url: str = "https://charts.bitnami.com/bitnami"
    version: str = ""
    database: str = "sonarqube"
    username: str = "sonarqube"
    password: str = ""  # generated when empty
    persistence_size: str = "8Gi"
    port: int = 5432


@dataclass
class ApplicationConfig:
    """SonarQube Helm release configuration."""

    namespace: str = "sonarqube"
    release: str = "sonarqube"
    chart: str = "sonarqube/sonarqube"
    repo_url: str = "https://SonarSource.github.io/helm-chart-sonarqube"
    version: str = ""
    credentials_secret: str = "sonarqube-credentials"
    ingress_enabled: bool = True
    ingress_host: str = "sonarqube.local"
    ingress_class: str = "nginx"
    persistence_size: str = "5Gi"
    node_port: int = 30900
    node_address: str = "127.0.0.1"
    http_probe: bool = False
    proceed_on_timeout: bool = False


@dataclass
class ProberConfig:
    """Readiness prober configuration."""

    namespace_timeout: float = 60.0
    release_timeout: float = 600.0
    poll_interval: float = 5.0
    error_budget: int | None = None


@dataclass
class ExecutorConfig:
    """Resource graph executor configuration."""

    concurrency_limit: int | None = None
    state_path: str = ".stackdeploy/state.json"


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class StackConfig:
    """Top-level stackdeploy configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    application: ApplicationConfig = field(default_factory=ApplicationConfig)
    prober: ProberConfig = field(default_factory=ProberConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    log: LogConfig = field(default_factory=LogConfig)
