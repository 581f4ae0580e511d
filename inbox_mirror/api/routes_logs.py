import logging
import threading
from collections import deque
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from .deps import require_api_key

router = APIRouter(prefix="/api/logs", tags=["logs"], dependencies=[Depends(require_api_key)])


class BufferedLogHandler(logging.Handler):
    """Thread-safe handler keeping the most recent log records in memory."""

    def __init__(self, maxlen: int = 500):
        super().__init__()
        self._buffer: deque[dict] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": self.format(record),
        }
        with self._lock:
            self._buffer.append(entry)

    def get_buffer(self, limit: int | None = None) -> list[dict]:
        with self._lock:
            entries = list(self._buffer)
        return entries[-limit:] if limit else entries

    def clear(self):
        with self._lock:
            self._buffer.clear()


log_handler = BufferedLogHandler()
log_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))


@router.get("")
async def recent_logs(limit: int = Query(100, ge=1, le=500)):
    return {"logs": log_handler.get_buffer(limit)}


@router.delete("")
async def clear_logs():
    log_handler.clear()
    return {"status": "ok"}
