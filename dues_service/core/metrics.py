"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behaviour import the object and increment it where the event
happens.  HTTP metrics are fed by MetricsMiddleware, the billing ones by
the settlement engine, the billing run and the webhook handlers.

Label values are kept to small closed sets (outcome names, event types)
so the series count stays bounded; identifiers such as payment ids never
become labels.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Billing metrics
# ---------------------------------------------------------------------------

SETTLEMENTS = Counter(
    "settlements_total",
    "Settlement attempts by outcome",
    # settled|already_settled|not_found|conflict|invalid_state|stale|partial|error
    ["outcome"],
)

MONTHS_CREDITED = Counter(
    "months_credited_total",
    "Paid months credited to memberships by settlement",
)

ELIGIBILITY_TRANSITIONS = Counter(
    "eligibility_transitions_total",
    "Memberships that reached the eligibility threshold",
)

BILLING_RUN_PAYMENTS = Counter(
    "billing_run_payments_created_total",
    "Pending dues payments created by recurring billing runs",
)

WEBHOOK_EVENTS = Counter(
    "webhook_events_total",
    "Processor webhook events by type and handling result",
    ["event_type", "result"],  # result: handled|duplicate|ignored|failed
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
