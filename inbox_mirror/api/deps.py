import secrets

from fastapi import HTTPException, Request

from ..config import AppConfig
from ..mirror.engine import MirrorEngine


def get_engine(request: Request) -> MirrorEngine:
    return request.app.state.engine


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config


def require_api_key(request: Request) -> None:
    """Check ``Authorization: Bearer <api_key>``. No configured key means no auth."""
    api_key = get_app_config(request).api_key
    if not api_key:
        return
    supplied = request.headers.get("authorization", "")
    if not secrets.compare_digest(supplied.encode(), f"Bearer {api_key}".encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
