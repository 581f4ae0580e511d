import time

from fastapi import APIRouter, Depends, Request

from ..mirror.engine import MirrorEngine
from .deps import get_engine, require_api_key

router = APIRouter(tags=["sync"])


@router.get("/health")
async def health(request: Request, engine: MirrorEngine = Depends(get_engine)):
    report = engine.last_report
    sync = report.model_dump(mode="json") if report else {}
    sync["is_running"] = engine.is_running
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - request.app.state.started_at),
        "chats_in_index": len(engine.index),
        "chats_in_cache": engine.cache.count(),
        "webhooks_seen": len(engine.webhook_seen),
        "sync": sync,
    }


@router.post("/sync", dependencies=[Depends(require_api_key)])
async def trigger_sync(engine: MirrorEngine = Depends(get_engine)):
    """Start a sweep in the background."""
    if engine.schedule_sweep() is None:
        return {"triggered": False, "status": "already_running"}
    return {"triggered": True}
