"""Canonicalize inbound ``mensaje`` payloads into chat records.

The kind of record is inferred from the payload: anything carrying a
``cipherText`` key is a text message, everything else is treated as media.
Payload contents are never decoded, only checked for presence.
"""
import logging
import time
import uuid
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError

from .schemas import AnyRecord, MediaRecord, MessageKind, Reactions, TextRecord

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class InvalidPayload(ValueError):
    """Raised when an inbound message cannot become a record."""


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_message_id() -> str:
    """Time-ordered prefix plus a random suffix, e.g. ``lx3k9c2a-4f1b9e07``."""
    return f"{_to_base36(int(time.time() * 1000))}-{uuid.uuid4().hex[:8]}"


def default_timestamp() -> str:
    """Current wall-clock time as a locale time string."""
    return time.strftime("%X")


def infer_kind(raw: Mapping[str, Any]) -> MessageKind:
    return MessageKind.TEXT if "cipherText" in raw else MessageKind.MEDIA


def clean_reactions(
    reactions: Any, allowed_emojis: Optional[Iterable[str]] = None
) -> Reactions:
    """Deep-copy a reactions map, dropping bad keys, duplicates and empty sets.

    Args:
        reactions: Caller-owned mapping of emoji -> reactor ids (may be junk).
        allowed_emojis: If given, emojis outside this list are discarded.

    Returns:
        A new dict that shares no lists with *reactions*.
    """
    if not isinstance(reactions, Mapping):
        return {}
    allowed = set(allowed_emojis) if allowed_emojis is not None else None
    cleaned: Reactions = {}
    for emoji, reactors in reactions.items():
        if not isinstance(emoji, str) or (allowed is not None and emoji not in allowed):
            continue
        if not isinstance(reactors, (list, tuple, set, frozenset)):
            continue
        unique = []
        for reactor in reactors:
            if isinstance(reactor, str) and reactor and reactor not in unique:
                unique.append(reactor)
        if unique:
            cleaned[emoji] = unique
    return cleaned


def normalize_message(
    raw: Any,
    autor: str,
    allowed_emojis: Optional[Iterable[str]] = None,
) -> AnyRecord:
    """Build a record from an inbound payload.

    Args:
        raw: Decoded JSON payload sent by the client.
        autor: Author tag of the sending session (never taken from *raw*).
        allowed_emojis: Allow-list applied to any supplied reactions.

    Returns:
        A TextRecord or MediaRecord with ``id``, ``fecha`` and ``reacciones`` filled in.

    Raises:
        InvalidPayload: Missing ciphertext/iv, missing media URLs, or not a mapping.
    """
    if not isinstance(raw, Mapping):
        raise InvalidPayload("message payload must be an object")

    message_id = raw.get("id")
    if not isinstance(message_id, str) or not message_id.strip():
        message_id = generate_message_id()

    fecha = raw.get("fecha")
    if not isinstance(fecha, str) or not fecha:
        fecha = default_timestamp()

    common = {
        "id": message_id,
        "autor": autor,
        "fecha": fecha,
        "reacciones": clean_reactions(raw.get("reacciones"), allowed_emojis),
    }

    kind = infer_kind(raw)
    try:
        if kind == MessageKind.TEXT:
            cipher_text = raw.get("cipherText")
            iv = raw.get("iv")
            if not cipher_text or not iv:
                raise InvalidPayload("text message requires cipherText and iv")
            return TextRecord(cipherText=cipher_text, iv=iv, **common)

        url_full = raw.get("urlFull")
        url_thumb = raw.get("urlThumb")
        if not url_full or not url_thumb:
            raise InvalidPayload("media message requires urlFull and urlThumb")
        return MediaRecord(
            urlFull=url_full,
            urlThumb=url_thumb,
            mimeType=raw.get("mimeType") or "",
            byteSize=raw.get("byteSize") or 0,
            originalName=raw.get("originalName") or "",
            **common,
        )
    except ValidationError as exc:
        raise InvalidPayload(f"invalid {kind.value} message: {exc.error_count()} error(s)") from exc
