"""
Webhook endpoints for Meta (Facebook/Instagram) and WhatsApp

GET handles the subscription handshake; POST verifies the signature,
persists the payload and acknowledges immediately. Processing happens in
Celery, so processing errors never reach the sender.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from socialhub.core.monitoring import metrics
from socialhub.core.webhook_security import SIGNATURE_HEADER, WebhookProvider, WebhookSecurityError
from socialhub.db.database import get_db
from socialhub.services.webhook_event_store import WebhookEventStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _hub_param(request: Request, name: str) -> Optional[str]:
    """Meta sends hub.<name>; some proxies rewrite the dot to an underscore"""
    params = request.query_params
    return params.get(f"hub.{name}") or params.get(f"hub_{name}")


def _handshake(request: Request, db: Session, provider: str):
    challenge = WebhookEventStore(db).verify(
        provider,
        _hub_param(request, "mode"),
        _hub_param(request, "verify_token"),
        _hub_param(request, "challenge"),
    )
    if challenge is None:
        return JSONResponse(status_code=403, content={"error": "Verification failed"})
    return PlainTextResponse(content=challenge, status_code=200)


async def _receive(request: Request, db: Session, provider: str):
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    store = WebhookEventStore(db)

    try:
        store.verify_signature(body, signature)
    except WebhookSecurityError as e:
        metrics.record_webhook_received(provider, "rejected")
        logger.warning(f"Rejected {provider} webhook: {e}")
        return JSONResponse(status_code=403, content={"error": "Invalid signature"})

    try:
        payload = json.loads(body)
    except ValueError:
        metrics.record_webhook_received(provider, "malformed")
        logger.warning(f"Rejected {provider} webhook: body is not valid JSON")
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    store.accept(provider, signature, payload)
    metrics.record_webhook_received(provider, "accepted")
    return {"status": "received"}


@router.get("/meta")
def verify_meta_webhook(request: Request, db: Session = Depends(get_db)):
    """Meta subscription handshake; echoes hub.challenge as text/plain"""
    return _handshake(request, db, WebhookProvider.FACEBOOK.value)


@router.post("/meta")
async def receive_meta_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Receive a Facebook page or Instagram webhook

    Returns:
        {"status": "received"} once the payload is stored, 403 on a bad signature
    """
    return await _receive(request, db, WebhookProvider.FACEBOOK.value)


@router.get("/whatsapp")
def verify_whatsapp_webhook(request: Request, db: Session = Depends(get_db)):
    return _handshake(request, db, WebhookProvider.WHATSAPP.value)


@router.post("/whatsapp")
async def receive_whatsapp_webhook(request: Request, db: Session = Depends(get_db)):
    return await _receive(request, db, WebhookProvider.WHATSAPP.value)
