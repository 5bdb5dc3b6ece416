"""Processor webhook intake.

Signature first, then reconciliation. Status codes drive the processor's
retry behaviour: 400 for payloads that will never verify, 500 when a
retry might succeed, 200 for everything handled or deliberately ignored.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from dues_service.api.dependencies import get_processor, get_stores, get_task_queue
from dues_service.repos.stores import Stores
from dues_service.services.processor import PaymentProcessor, WebhookSignatureError
from dues_service.services.task_queue import TaskQueue
from dues_service.services.webhooks import WebhookProcessingError, handle_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stores: Annotated[Stores, Depends(get_stores)],
    processor: Annotated[PaymentProcessor, Depends(get_processor)],
    queue: Annotated[TaskQueue, Depends(get_task_queue)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> dict:
    payload = await request.body()
    if not stripe_signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="missing signature"
        )
    try:
        event = processor.verify_webhook(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)
        ) from None

    try:
        outcome = await handle_event(event, stores, queue)
    except WebhookProcessingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"webhook processing failed: {e}",
        ) from None

    return {"received": True, "result": outcome.result}
