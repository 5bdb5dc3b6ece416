"""Prometheus metrics endpoint.

Scraped by Prometheus; plain text in the exposition format, not JSON.
Besides the HTTP request metrics this exposes the billing counters from
``core/metrics.py``:

  settlements_total{outcome="settled"} 42.0
  webhook_events_total{event_type="payment_intent.succeeded",result="handled"} 40.0

Restrict access in deployment (internal port or scraper IP allow-list);
settlement counts are business data.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
