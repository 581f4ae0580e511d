"""Human-readable transcript of a cached conversation (chat_<id>.txt)."""

from datetime import datetime

from .models import CachedConversation

MAX_LINE_TEXT = 300
UNKNOWN_STAMP = "??.?? ??:??"


def _stamp(created: int) -> str:
    try:
        return datetime.fromtimestamp(created).strftime("%d.%m %H:%M")
    except (ValueError, OverflowError, OSError):
        return UNKNOWN_STAMP


def render_transcript(conv: CachedConversation, operator_id: str, link: str = "") -> str:
    lines = [
        f"Chat: {conv.conversation_id}",
        f"Link: {link}" if link else "Link: -",
        f"Messages: {len(conv.messages)}",
        "-" * 60,
    ]
    for msg in conv.messages:
        who = "-> us" if msg.author_id == operator_id else "<- client"
        lines.append(f"[{_stamp(msg.created)}] {who}: {msg.text[:MAX_LINE_TEXT]}")
    return "\n".join(lines) + "\n"
