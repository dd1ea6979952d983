"""Inbound webhooks.

``POST /webhooks/banking`` receives aggregator events. When a webhook secret
is configured, the raw body must carry a valid HMAC-SHA256 in
``X-Signature``; anything else is rejected with 401 before parsing.
"""

from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from tether.api.deps import Hub
from tether.api.schemas import WebhookAck
from tether.core.logging import get_logger
from tether.integrations.banking import BankingClient, WebhookEvent

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/banking", response_model=WebhookAck)
async def banking_webhook(
    request: Request,
    hub: Hub,
    x_signature: str | None = Header(default=None),
) -> WebhookAck:
    if hub.banking is None:
        raise HTTPException(status_code=503, detail="banking integration not configured")

    raw = await request.body()
    secret = hub.settings.banking_webhook_secret
    if secret is not None:
        BankingClient.verify_signature(raw, x_signature, secret.get_secret_value())

    try:
        event = WebhookEvent.model_validate_json(raw)
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e

    action = await hub.banking.handle_webhook(event)
    logger.info("webhook.banking", webhook_event=event.event, item_id=event.item_id, action=action)
    return WebhookAck(event=event.event, action=action)
