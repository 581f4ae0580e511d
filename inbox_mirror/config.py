import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RemoteConfig(BaseModel):
    api_base: str = "https://api.avito.ru"
    client_id: str = ""
    client_secret: str = ""
    user_id: str = "204620380"  # operator account, used to derive message direction
    timeout_seconds: float = 30.0
    token_refresh_margin_seconds: int = 3600
    conversation_link_template: str = "https://www.avito.ru/profile/messenger/channel/{chat_id}"


class SyncConfig(BaseModel):
    interval_minutes: int = 15
    startup_delay_seconds: float = 3.0
    page_size: int = 100
    max_conversations: int = 1100
    page_delay_seconds: float = 0.3
    refresh_delay_seconds: float = 0.2
    message_window: int = 50
    enabled: bool = True


class AppConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 4040
    api_key: str = ""  # empty = API endpoints are open
    cache_dir: str = "cache"
    remote: RemoteConfig = RemoteConfig()
    sync: SyncConfig = SyncConfig()


# env var -> (section, field); section None means top level
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str]] = {
    "HOST": (None, "host"),
    "PORT": (None, "port"),
    "WEBHOOK_API_KEY": (None, "api_key"),
    "CACHE_DIR": (None, "cache_dir"),
    "AVITO_API_BASE": ("remote", "api_base"),
    "AVITO_CLIENT_ID": ("remote", "client_id"),
    "AVITO_CLIENT_SECRET": ("remote", "client_secret"),
    "AVITO_USER_ID": ("remote", "user_id"),
    "SYNC_INTERVAL_MINUTES": ("sync", "interval_minutes"),
}


def _default_cache_dir() -> Path:
    return Path(os.environ.get("CACHE_DIR", "cache"))


def _apply_env(data: dict) -> dict:
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None or value == "":
            continue
        if section is None:
            data[field] = value
        else:
            data.setdefault(section, {})[field] = value
    return data


def load_config() -> AppConfig:
    """Build the config from defaults, ``<cache_dir>/config.json`` and the environment.

    Environment variables win over the file so that deployments can override a
    checked-in config without editing it.
    """
    data: dict = {}
    config_file = _default_cache_dir() / "config.json"
    if config_file.exists():
        try:
            data = json.loads(config_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to load %s: %s", config_file, e)
            data = {}
    return AppConfig(**_apply_env(data))


_current_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _current_config
    if _current_config is None:
        _current_config = load_config()
    return _current_config
