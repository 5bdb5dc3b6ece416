"""Tests for the Prometheus metrics middleware.

The default registry is global and counters only go up, so every test
asserts on the delta around its own requests.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_endpoint_label_is_route_template(client: TestClient) -> None:
    """Payment ids must not become label values."""
    labels = {
        "method": "POST",
        "endpoint": "/v1/payments/{payment_id}/settle",
        "status_code": "404",
    }
    before = _get_sample("http_requests_total", labels)
    client.post(f"/v1/payments/{uuid.uuid4()}/settle", json={})
    client.post(f"/v1/payments/{uuid.uuid4()}/settle", json={})
    assert _get_sample("http_requests_total", labels) - before == 2


def test_unknown_path_is_labelled_unmatched(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/no/such/path")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_metrics_endpoint_exposes_billing_counters(client: TestClient) -> None:
    client.post("/v1/fees/quote", json={"base_amount_cents": 1000})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "settlements_total" in resp.text
    assert "webhook_events_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
