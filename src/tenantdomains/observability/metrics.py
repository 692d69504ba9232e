from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

VERIFICATION_ATTEMPTS = Counter(
    "tenantdomains_verification_attempts_total",
    "DNS ownership verification attempts",
    ["outcome"],  # verified, already_verified, mismatch, not_found, lookup_failed
)

CNAME_CHECKS = Counter(
    "tenantdomains_cname_checks_total",
    "CNAME configuration checks",
    ["outcome"],  # ok, mismatch, lookup_failed
)

PROVISIONING_RUNS = Counter(
    "tenantdomains_provisioning_runs_total",
    "Certificate provisioning runs",
    ["outcome"],  # active, failed
)

PROVISIONING_IN_FLIGHT = Gauge(
    "tenantdomains_provisioning_in_flight",
    "Certificate provisioning runs currently in flight",
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
