from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PREVIEW_LENGTH = 100


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class LinkedItem(BaseModel):
    """Marketplace listing the conversation is about."""

    title: str = ""
    price_display: str = ""
    url: str = ""


class ConversationSummary(BaseModel):
    """Lightweight per-conversation metadata (stored in index.json).

    Only ``last_message_id`` takes part in staleness detection; the rest is
    display metadata refreshed on every sweep.
    """

    conversation_id: str
    last_message_id: str = ""
    last_updated_at: int = 0
    last_direction: Direction = Direction.INBOUND
    last_text_preview: str = ""
    counterpart_names: list[str] = []
    linked_item: Optional[LinkedItem] = None


class Message(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    created: int = 0
    author_id: str = ""
    type: str = "text"
    content: Optional[dict[str, Any]] = None

    @field_validator("id", "author_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("created", mode="before")
    @classmethod
    def _coerce_created(cls, value: Any) -> int:
        try:
            return int(value or 0)
        except OverflowError as e:
            # surface as a ValidationError
            raise ValueError(f"created out of range: {value!r}") from e

    @property
    def text(self) -> str:
        if self.content and isinstance(self.content.get("text"), str):
            return self.content["text"]
        return f"[{self.type or 'unknown'}]"


class CachedConversation(BaseModel):
    conversation_id: str
    messages: list[Message] = []
    cached_at: str = Field(default_factory=_now_iso)


class SweepReport(BaseModel):
    status: str = "completed"  # "completed" | "already_running"
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0
    checked: int = 0
    updated: int = 0
    errors: int = 0
    listing_failed: bool = False


class WebhookMark(BaseModel):
    """Last push notification seen for a conversation. Informational only."""

    last_message_id: str = ""
    at: float = 0.0


class WebhookNotification(BaseModel):
    conversation_id: str
    message_id: str = ""


def summary_from_listing(chat: dict, operator_id: str) -> ConversationSummary:
    """Build a summary from one item of the remote chat listing."""
    last_msg = chat.get("last_message") or {}
    content = last_msg.get("content") or {}
    text = content.get("text") if isinstance(content, dict) else None

    names = [
        user.get("name")
        for user in chat.get("users") or []
        if str(user.get("id")) != operator_id and user.get("name")
    ]

    context_value = (chat.get("context") or {}).get("value")
    linked_item = None
    if context_value:
        linked_item = LinkedItem(
            title=context_value.get("title") or "",
            price_display=context_value.get("price_string") or "",
            url=context_value.get("url") or "",
        )

    author = last_msg.get("author_id")
    return ConversationSummary(
        conversation_id=str(chat["id"]),
        last_message_id=str(last_msg.get("id") or ""),
        last_updated_at=int(last_msg.get("created") or 0),
        last_direction=(
            Direction.OUTBOUND
            if author is not None and str(author) == operator_id
            else Direction.INBOUND
        ),
        last_text_preview=(text or "")[:PREVIEW_LENGTH],
        counterpart_names=names,
        linked_item=linked_item,
    )


def parse_webhook_payload(payload: Any) -> Optional[WebhookNotification]:
    """Extract the conversation/message ids from a push notification.

    Accepts the platform's envelope (``{"payload": {"value": {"chat_id", "id"}}}``)
    and a flat ``{"conversation_id", "message_id"}`` body. Returns None when no
    conversation id is present.
    """
    if not isinstance(payload, dict):
        return None
    inner = payload.get("payload")
    value = inner.get("value") if isinstance(inner, dict) else None
    if isinstance(value, dict) and value.get("chat_id"):
        return WebhookNotification(
            conversation_id=str(value["chat_id"]),
            message_id=str(value.get("id") or ""),
        )
    if payload.get("conversation_id"):
        return WebhookNotification(
            conversation_id=str(payload["conversation_id"]),
            message_id=str(payload.get("message_id") or ""),
        )
    return None
