"""Serve generated files (reports, transcripts) from the cache directory."""

import logging
from pathlib import Path
from posixpath import normpath

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from ..config import AppConfig
from .deps import get_app_config, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"], dependencies=[Depends(require_api_key)])

MEDIA_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@router.get("/{filename:path}")
async def get_report(filename: str, config: AppConfig = Depends(get_app_config)):
    if ".." in filename or normpath("/" + filename) != "/" + filename.rstrip("/"):
        logger.warning("Blocked report path %r", filename)
        raise HTTPException(status_code=403, detail="Forbidden")

    base = Path(config.cache_dir).resolve()
    target = (base / filename).resolve()
    if base not in target.parents:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = MEDIA_TYPES.get(target.suffix.lower(), "application/octet-stream")
    return FileResponse(target, media_type=media_type)
