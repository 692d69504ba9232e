"""Prometheus metrics for domain verification and certificate provisioning."""

from tenantdomains.observability.metrics import (
    CNAME_CHECKS,
    PROVISIONING_IN_FLIGHT,
    PROVISIONING_RUNS,
    VERIFICATION_ATTEMPTS,
    generate_metrics,
    get_content_type,
)
from tenantdomains.observability.server import create_metrics_app, start_metrics_server

__all__ = [
    "VERIFICATION_ATTEMPTS",
    "CNAME_CHECKS",
    "PROVISIONING_RUNS",
    "PROVISIONING_IN_FLIGHT",
    "generate_metrics",
    "get_content_type",
    "create_metrics_app",
    "start_metrics_server",
]
