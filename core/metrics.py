from prometheus_client import Counter, Histogram

# -----------------------------
# HTTP / API level metrics
# -----------------------------
REQUEST_COUNT = Counter(
    "vm_provisioner_requests_total",
    "Total HTTP requests to vm-provisioner",
    ["method", "endpoint"],
)

REQUEST_LATENCY = Histogram(
    "vm_provisioner_request_latency_seconds",
    "Latency of HTTP requests to vm-provisioner",
    ["endpoint"],
)


# -----------------------------
# Provisioning metrics
# -----------------------------
PROVISION_HOSTS_TOTAL = Counter(
    "vm_provision_hosts_total",
    "Hosts processed by the provisioner, by result",
    ["host", "result"],
)

PROVISION_STEP_FAILURES = Counter(
    "vm_provision_step_failures_total",
    "Provisioning failures by the step that failed",
    ["step"],
)

PROVISION_DURATION = Histogram(
    "vm_provision_duration_seconds",
    "Wall time spent provisioning one host (including the post-start wait)",
    ["host"],
    buckets=(1, 10, 60, 300, 600, 1200, 1800, 3600, float("inf")),
)


def record_host_outcome(host: str, success: bool, failed_step: str | None, duration: float) -> None:
    result = "success" if success else "failure"
    PROVISION_HOSTS_TOTAL.labels(host=host, result=result).inc()
    PROVISION_DURATION.labels(host=host).observe(duration)
    if not success:
        PROVISION_STEP_FAILURES.labels(step=failed_step or "unknown").inc()
