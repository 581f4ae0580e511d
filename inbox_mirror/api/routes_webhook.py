import json
import logging

from fastapi import APIRouter, Request

from ..mirror.models import parse_webhook_payload
from .deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook")
@router.post("/")
async def receive_webhook(request: Request) -> dict:
    """Push notification from the messenger. Always acknowledged; the refresh runs in the background."""
    body = await request.body()
    text = body.decode("utf-8", errors="replace")
    logger.info("Webhook: %s", text[:300])

    try:
        payload = json.loads(text) if text else None
    except json.JSONDecodeError as e:
        logger.error("Webhook parse error: %s", e)
        return {"ok": True}

    notification = parse_webhook_payload(payload)
    if notification is None:
        return {"ok": True}

    engine = get_engine(request)
    if engine.handle_webhook(notification):
        engine.schedule_refresh(notification.conversation_id)
    return {"ok": True}
