"""JSON file persistence for cached conversations and engine state.

Layout under the cache dir::

    index.json            summary index {conversation_id: summary}
    sync-status.json      last sweep report
    webhook-seen.json     {conversation_id: webhook mark}
    chats/<enc>.json      cached conversation
    chats/chat_<enc>.txt  human-readable transcript

Writes are best-effort: an ``OSError`` is logged and reported to the caller
as ``False`` instead of propagating.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .ids import decode_conversation_id, encode_conversation_id
from .models import CachedConversation, ConversationSummary, Message, SweepReport, WebhookMark
from .transcript import render_transcript

logger = logging.getLogger(__name__)


def _read_json(path: Path):
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.error("Failed to load %s: %s", path.name, e)
    return None


def _write_json(path: Path, data, indent: Optional[int] = 2) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=indent, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        return True
    except OSError as e:
        logger.error("Failed to write %s: %s", path.name, e)
        return False


class CacheStore:
    """Per-conversation message cache, keyed by the encoded conversation id."""

    def __init__(self, cache_dir: Path, operator_id: str = "", link_template: str = ""):
        self._chats_dir = Path(cache_dir) / "chats"
        self._operator_id = operator_id
        self._link_template = link_template

    @property
    def chats_dir(self) -> Path:
        return self._chats_dir

    def _json_path(self, conversation_id: str) -> Path:
        return self._chats_dir / f"{encode_conversation_id(conversation_id)}.json"

    def _txt_path(self, conversation_id: str) -> Path:
        return self._chats_dir / f"chat_{encode_conversation_id(conversation_id)}.txt"

    def save(self, conversation_id: str, messages: list[Message]) -> Optional[CachedConversation]:
        """Write the conversation (messages sorted by ``created``) and its transcript.

        Returns the stored record, or None when the JSON blob could not be written.
        """
        conv = CachedConversation(
            conversation_id=conversation_id,
            messages=sorted(messages, key=lambda m: m.created),
        )
        link = self._link_template.format(chat_id=conversation_id) if self._link_template else ""
        transcript = render_transcript(conv, self._operator_id, link)
        if not _write_json(self._json_path(conversation_id), conv.model_dump(mode="json"), indent=None):
            return None

        try:
            self._txt_path(conversation_id).write_text(transcript, encoding="utf-8")
        except OSError as e:
            # The JSON blob is authoritative; a missing transcript is not a failed refresh.
            logger.error("Failed to write transcript for %s: %s", conversation_id, e)
        return conv

    def load(self, conversation_id: str) -> Optional[CachedConversation]:
        data = _read_json(self._json_path(conversation_id))
        if data is None:
            return None
        try:
            return CachedConversation.model_validate(data)
        except ValidationError as e:
            logger.error("Corrupt cache entry for %s: %s", conversation_id, e)
            return None

    def list_ids(self) -> list[str]:
        if not self._chats_dir.exists():
            return []
        return sorted(
            decode_conversation_id(p.stem)
            for p in self._chats_dir.glob("*.json")
        )

    def count(self) -> int:
        return len(self.list_ids())


class StateStore:
    """Summary index, sweep status and webhook marks."""

    def __init__(self, cache_dir: Path):
        cache_dir = Path(cache_dir)
        self._index_file = cache_dir / "index.json"
        self._status_file = cache_dir / "sync-status.json"
        self._webhook_file = cache_dir / "webhook-seen.json"

    # ---- Summary index ----

    def load_index(self) -> dict[str, ConversationSummary]:
        raw = _read_json(self._index_file)
        if not isinstance(raw, dict):
            return {}
        index = {}
        for conv_id, item in raw.items():
            try:
                index[conv_id] = ConversationSummary.model_validate({**item, "conversation_id": conv_id})
            except (ValidationError, TypeError):
                logger.warning("Skipping unreadable index entry %s", conv_id)
        return index

    def save_index(self, index: dict[str, ConversationSummary]) -> bool:
        return _write_json(
            self._index_file,
            {conv_id: s.model_dump(mode="json") for conv_id, s in index.items()},
        )

    # ---- Sweep status ----

    def load_status(self) -> Optional[SweepReport]:
        raw = _read_json(self._status_file)
        if not isinstance(raw, dict):
            return None
        try:
            return SweepReport.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable sync-status.json")
            return None

    def save_status(self, report: SweepReport) -> bool:
        return _write_json(self._status_file, report.model_dump(mode="json"))

    # ---- Webhook marks ----

    def load_webhook_seen(self) -> dict[str, WebhookMark]:
        raw = _read_json(self._webhook_file)
        if not isinstance(raw, dict):
            return {}
        marks = {}
        for conv_id, item in raw.items():
            try:
                marks[conv_id] = WebhookMark.model_validate(item)
            except ValidationError:
                continue
        return marks

    def save_webhook_seen(self, marks: dict[str, WebhookMark]) -> bool:
        return _write_json(
            self._webhook_file,
            {conv_id: m.model_dump() for conv_id, m in marks.items()},
        )
