import logging
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api.routes_chats import router as chats_router
from .api.routes_logs import router as logs_router, log_handler
from .api.routes_reports import router as reports_router
from .api.routes_sync import router as sync_router
from .api.routes_webhook import router as webhook_router
from .config import AppConfig, get_config
from .mirror.engine import MirrorEngine
from .mirror.storage import CacheStore, StateStore
from .remote.client import RemoteClient
from .scheduler.runner import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(cache_dir: str) -> None:
    root_logger = logging.getLogger()
    if log_handler in root_logger.handlers:
        return

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stdout)
    root_logger.addHandler(log_handler)
    try:
        Path(cache_dir).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(cache_dir) / "webhook.log", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)
    except OSError as e:
        logger.warning("File logging disabled: %s", e)


def build_engine(config: AppConfig) -> MirrorEngine:
    client = RemoteClient(config.remote)
    cache = CacheStore(
        Path(config.cache_dir),
        operator_id=config.remote.user_id,
        link_template=config.remote.conversation_link_template,
    )
    return MirrorEngine(client, cache, StateStore(Path(config.cache_dir)), config.sync)


def create_app(config: Optional[AppConfig] = None, engine: Optional[MirrorEngine] = None) -> FastAPI:
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_engine = getattr(app.state, "engine", None) is None
        if owns_engine:
            app.state.engine = build_engine(config)
        mirror: MirrorEngine = app.state.engine

        logger.info("Inbox mirror started on port %d", config.port)
        logger.info("API auth: %s", "enabled" if config.api_key else "DISABLED (no WEBHOOK_API_KEY)")
        if not config.api_key:
            logger.warning("API endpoints are open; set WEBHOOK_API_KEY to protect them")

        mirror.load_state()
        if config.sync.enabled:
            start_scheduler(mirror, config.sync)
        yield
        logger.info("Shutting down, saving state...")
        stop_scheduler()
        mirror.save_state()
        if owns_engine:
            await mirror.client.aclose()

    app = FastAPI(title="Inbox Mirror", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.started_at = time.monotonic()
    if engine is not None:
        app.state.engine = engine

    app.include_router(sync_router)
    app.include_router(webhook_router)
    app.include_router(chats_router)
    app.include_router(reports_router)
    app.include_router(logs_router)
    return app


configure_logging(get_config().cache_dir)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=get_config().host, port=get_config().port)
