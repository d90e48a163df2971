"""Instagram webhook endpoint.

Deliveries are validated, deduplicated and queued, then acknowledged
immediately; conversation processing happens on the pipeline's workers.
"""

import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from dmpilot.api.dependencies import get_app_settings, get_pipeline
from dmpilot.api.schemas import WebhookAck
from dmpilot.config import Settings
from dmpilot.engine.errors import MalformedEvent
from dmpilot.engine.pipeline import EventPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def verify_webhook_signature(
    payload_body: bytes,
    signature_header: Optional[str],
    app_secret: str,
) -> bool:
    """Verify Meta webhook signature (X-Hub-Signature-256).

    Args:
        payload_body: Raw request body bytes
        signature_header: Value of X-Hub-Signature-256 header
        app_secret: Meta App Secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), payload_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])


@router.get("/instagram", response_class=PlainTextResponse)
def verify_subscription(
    hub_mode: str = Query(default="", alias="hub.mode"),
    hub_challenge: str = Query(default="", alias="hub.challenge"),
    hub_verify_token: str = Query(default="", alias="hub.verify_token"),
    settings: Settings = Depends(get_app_settings),
):
    """Answer Meta's subscription check by echoing the challenge as plain text."""
    expected = settings.webhook_verify_token
    if hub_mode == "subscribe" and expected and hmac.compare_digest(hub_verify_token, expected):
        logger.info("Webhook subscription verified")
        return hub_challenge
    logger.warning("Webhook verification failed: token mismatch or invalid mode")
    raise HTTPException(status_code=403, detail="Invalid verify token")


@router.post("/instagram", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    pipeline: EventPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_app_settings),
) -> WebhookAck:
    """Receive Instagram webhook events from Meta."""
    body = await request.body()

    if settings.is_signature_check_enabled and not verify_webhook_signature(
        body,
        request.headers.get("X-Hub-Signature-256"),
        settings.meta_app_secret,
    ):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise HTTPException(status_code=403, detail="Invalid webhook signature")

    # Anything unparseable is acked so Meta does not keep redelivering it
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Ignoring webhook with invalid JSON body")
        return WebhookAck(status="ignored")

    try:
        result = await run_in_threadpool(pipeline.ingest, payload)
    except MalformedEvent as e:
        logger.warning(f"Ignoring webhook: {e}")
        return WebhookAck(status="ignored")

    return WebhookAck(status="ok", **result.as_dict())
