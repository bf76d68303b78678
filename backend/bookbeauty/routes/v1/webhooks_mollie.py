"""
Mollie webhook endpoint (v1).

Mounted under /api/v1/webhooks/mollie

Mollie only sends the payment id; the status is always re-fetched from the
API, so the body carries no trust. The endpoint answers 200 for every
delivery, including ones it cannot process, and reports the outcome in the
body instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request

from ...api.dependencies import get_payment_service
from ...schemas.payments import WebhookResponse
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_MAX_WEBHOOK_BODY_BYTES = 65_536
_ID_KEYS = ("id", "paymentId")


def _first_id(values: Mapping[str, Any]) -> Optional[str]:
    for key in _ID_KEYS:
        raw = values.get(key)
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        text = str(raw or "").strip()
        if text:
            return text
    return None


async def extract_payment_id(request: Request) -> Optional[str]:
    """Payment id from the query string, a JSON body or a form body."""
    from_query = _first_id(request.query_params)
    if from_query:
        return from_query
    if request.method != "POST":
        return None

    raw_body = await request.body()
    if not raw_body or len(raw_body) > _MAX_WEBHOOK_BODY_BYTES:
        return None
    try:
        body_text = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        return None

    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        try:
            payload = json.loads(body_text)
        except json.JSONDecodeError:
            return None
        return _first_id(payload) if isinstance(payload, dict) else None

    # Mollie posts application/x-www-form-urlencoded ``id=tr_...``
    return _first_id(parse_qs(body_text))


async def _handle(request: Request, payment_service: PaymentService) -> WebhookResponse:
    payment_id = await extract_payment_id(request)
    result = await asyncio.to_thread(payment_service.handle_webhook, payment_id)
    logger.info(
        "Mollie webhook handled",
        extra={
            "payment_id": payment_id,
            "changed": result.get("changed"),
            "skipped": result.get("skipped"),
        },
    )
    return WebhookResponse(**result)


@router.post("", response_model=WebhookResponse, response_model_exclude_none=True)
async def mollie_webhook_post(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    return await _handle(request, payment_service)


@router.get("", response_model=WebhookResponse, response_model_exclude_none=True)
async def mollie_webhook_get(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    return await _handle(request, payment_service)
