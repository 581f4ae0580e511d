import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import AppConfig
from ..mirror.engine import MirrorEngine
from ..mirror.ids import InvalidConversationId, validate_conversation_id
from ..mirror.models import ConversationSummary, Direction
from .deps import get_app_config, get_engine, require_api_key

router = APIRouter(prefix="/api", tags=["chats"], dependencies=[Depends(require_api_key)])


def _chat_entry(summary: ConversationSummary, link_template: str) -> dict:
    last_date = None
    if summary.last_updated_at:
        last_date = datetime.fromtimestamp(summary.last_updated_at, timezone.utc).isoformat()
    return {
        "chat_id": summary.conversation_id,
        "link": link_template.format(chat_id=summary.conversation_id),
        **summary.model_dump(mode="json"),
        "last_date": last_date,
    }


def _newest_first(summaries) -> list[ConversationSummary]:
    return sorted(summaries, key=lambda s: s.last_updated_at, reverse=True)


@router.get("/chats")
async def list_chats(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: MirrorEngine = Depends(get_engine),
    config: AppConfig = Depends(get_app_config),
):
    index = engine.index
    page = _newest_first(index.values())[offset:offset + limit]
    template = config.remote.conversation_link_template
    return {
        "total": len(index),
        "offset": offset,
        "limit": limit,
        "chats": [_chat_entry(s, template) for s in page],
    }


@router.get("/unread")
async def list_unread(
    days: int = Query(3, ge=1),
    engine: MirrorEngine = Depends(get_engine),
    config: AppConfig = Depends(get_app_config),
):
    """Chats whose last message came from the client within the last ``days`` days."""
    cutoff = time.time() - days * 86400
    unread = _newest_first(
        s for s in engine.index.values()
        if s.last_direction == Direction.INBOUND and s.last_updated_at > cutoff
    )
    template = config.remote.conversation_link_template
    return {
        "count": len(unread),
        "days": days,
        "chats": [_chat_entry(s, template) for s in unread],
    }


@router.get("/chats/{chat_id:path}/messages")
async def get_chat_messages(chat_id: str, engine: MirrorEngine = Depends(get_engine)):
    try:
        validate_conversation_id(chat_id)
    except InvalidConversationId as e:
        raise HTTPException(status_code=400, detail=str(e))

    conv = engine.cache.load(chat_id)
    if conv is None:
        raise HTTPException(status_code=404, detail="Chat not in cache")
    return conv.model_dump(mode="json")
