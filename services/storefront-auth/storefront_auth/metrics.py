"""Prometheus instruments exported on ``/metrics``."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "storefront_auth_logins_total",
    "Login attempts by audience and outcome code.",
    ["audience", "outcome"],
)

AUDIT_WRITE_FAILURES = Counter(
    "storefront_audit_write_failures_total",
    "Audit entries that could not be written.",
    ["action"],
)

GUARD_FAIL_OPEN = Counter(
    "storefront_guard_fail_open_total",
    "Customer guard checks admitted because the backend failed.",
)
