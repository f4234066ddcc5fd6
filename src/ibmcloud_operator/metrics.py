"""Prometheus metrics for the IBM Cloud Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "ibmcloud_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "ibmcloud_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

error_total = Counter(
    "ibmcloud_operator_error_total",
    "Total number of reconcile errors",
    ["kind", "error_type"],
)

# Remote resource metrics
instance_operations_total = Counter(
    "ibmcloud_operator_instance_operations_total",
    "Total number of service instance operations",
    ["operation", "result"],
)

key_operations_total = Counter(
    "ibmcloud_operator_key_operations_total",
    "Total number of service key operations",
    ["operation", "result"],
)

# Credential drift detection metrics
drift_detected_total = Counter(
    "ibmcloud_operator_drift_detected_total",
    "Total number of credential secret drift detections",
    ["kind", "resource_type"],
)

# Provider API call metrics
api_call_total = Counter(
    "ibmcloud_operator_api_call_total",
    "Total number of provider API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "ibmcloud_operator_api_call_duration_seconds",
    "Duration of provider API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

rate_limit_hits_total = Counter(
    "ibmcloud_operator_rate_limit_hits_total",
    "Total number of client-side rate limit waits",
    ["api_type"],
)

# Resource status metrics
resource_state = Gauge(
    "ibmcloud_operator_resource_state",
    "Current state of managed resources (1 for the active state)",
    ["kind", "namespace", "name", "state"],
)
