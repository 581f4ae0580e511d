"""Conversation id validation and the filesystem-safe file name encoding."""

from urllib.parse import quote, unquote

MAX_ID_LENGTH = 256


class InvalidConversationId(ValueError):
    """Raised when a conversation id cannot be used for a remote call or a cache key."""


def validate_conversation_id(conversation_id) -> str:
    if not isinstance(conversation_id, str) or not conversation_id:
        raise InvalidConversationId("Conversation id must be a non-empty string")
    if len(conversation_id) > MAX_ID_LENGTH:
        raise InvalidConversationId(f"Conversation id longer than {MAX_ID_LENGTH} characters")
    if conversation_id in (".", ".."):
        raise InvalidConversationId(f"Conversation id '{conversation_id}' is reserved")
    if any(ch.isspace() or not ch.isprintable() for ch in conversation_id):
        raise InvalidConversationId("Conversation id contains whitespace or control characters")
    return conversation_id


def encode_conversation_id(conversation_id: str) -> str:
    """Map a conversation id to a single path component.

    Every character outside ``A-Za-z0-9_.-~`` is percent-encoded, including
    ``/`` and ``%`` itself, so distinct ids never share a file name and
    :func:`decode_conversation_id` recovers the original exactly.
    """
    return quote(conversation_id, safe="")


def decode_conversation_id(encoded: str) -> str:
    return unquote(encoded)
