import os
import tempfile

# inbox_mirror.main configures file logging under CACHE_DIR at import time
os.environ.setdefault("CACHE_DIR", tempfile.mkdtemp(prefix="inbox-mirror-test-"))

from unittest.mock import AsyncMock, MagicMock

import pytest

from inbox_mirror.config import SyncConfig
from inbox_mirror.mirror.engine import MirrorEngine
from inbox_mirror.mirror.storage import CacheStore, StateStore

OPERATOR_ID = "100"
LINK_TEMPLATE = "https://example.test/channel/{chat_id}"


def make_chat(chat_id, last_id, created=1_700_000_000, author_id=555, text="hello", item=None):
    chat = {
        "id": chat_id,
        "last_message": {
            "id": last_id,
            "created": created,
            "author_id": author_id,
            "content": {"text": text},
        },
        "users": [
            {"id": int(OPERATOR_ID), "name": "Shop"},
            {"id": author_id, "name": f"Client {chat_id}"},
        ],
    }
    if item:
        chat["context"] = {"type": "item", "value": item}
    return chat


def make_messages(*pairs):
    """Build raw remote messages from (id, created) pairs."""
    return [
        {"id": msg_id, "created": created, "author_id": 555, "type": "text",
         "content": {"text": f"text {msg_id}"}}
        for msg_id, created in pairs
    ]


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.operator_id = OPERATOR_ID
    client.list_conversations = AsyncMock(return_value=[])
    client.get_recent_messages = AsyncMock(return_value=make_messages(("m1", 10)))
    return client


@pytest.fixture
def sync_config():
    return SyncConfig(
        page_size=100,
        max_conversations=1100,
        page_delay_seconds=0,
        refresh_delay_seconds=0,
        enabled=False,
    )


@pytest.fixture
def cache_store(tmp_path):
    return CacheStore(tmp_path, operator_id=OPERATOR_ID, link_template=LINK_TEMPLATE)


@pytest.fixture
def state_store(tmp_path):
    return StateStore(tmp_path)


@pytest.fixture
def engine(mock_client, cache_store, state_store, sync_config):
    return MirrorEngine(mock_client, cache_store, state_store, sync_config)


def listing(*pages):
    """side_effect for list_conversations serving fixed pages keyed by call order."""
    pages = list(pages)

    async def _list(offset, limit):
        index = offset // limit
        return pages[index] if index < len(pages) else []

    return _list
