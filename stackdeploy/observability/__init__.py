"""Structured logging and Prometheus metrics for stackdeploy."""

from stackdeploy.observability.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
