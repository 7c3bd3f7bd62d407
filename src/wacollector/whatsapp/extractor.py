"""Content extraction from WhatsApp message trees.

Message content arrives as nested dicts keyed by message kind
(``conversation``, ``extendedTextMessage``, ``imageMessage``...). Some kinds
are transport wrappers whose ``message`` field holds another content tree.
Security: NEVER log extracted text.
"""

from typing import Any, Callable

from .models import ContextInfo, ExtractedContent

# Wrapper kinds; each holds the wrapped tree under "message"
WRAPPER_KINDS: tuple[str, ...] = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "editedMessage",
    "documentWithCaptionMessage",
)

# Payload kinds that may carry a contextInfo, in lookup order
_CONTEXT_CARRIERS: tuple[str, ...] = (
    "extendedTextMessage",
    "imageMessage",
    "videoMessage",
    "documentMessage",
)


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def unwrap_one(content: dict[str, Any]) -> dict[str, Any] | None:
    """Strip one wrapper layer. Returns None if ``content`` is not wrapped."""
    for kind in WRAPPER_KINDS:
        wrapper = _as_dict(content.get(kind))
        if wrapper is None:
            continue
        inner = _as_dict(wrapper.get("message"))
        if inner is not None:
            return inner
    return None


def unwrap(content: dict[str, Any] | None) -> dict[str, Any]:
    """Follow wrapper layers down to the innermost content tree.

    Terminates because every step descends one level into a finite tree.
    """
    current = _as_dict(content) or {}
    while True:
        inner = unwrap_one(current)
        if inner is None:
            return current
        current = inner


def _conversation(content: dict[str, Any]) -> str | None:
    value = content.get("conversation")
    return value if isinstance(value, str) else None


def _field(kind: str, key: str) -> Callable[[dict[str, Any]], str | None]:
    def read(content: dict[str, Any]) -> str | None:
        payload = _as_dict(content.get(kind))
        if payload is None:
            return None
        value = payload.get(key)
        return value if isinstance(value, str) else None

    read.__name__ = f"_{kind}_{key}"
    return read


# Text sources in priority order
TEXT_EXTRACTORS: tuple[Callable[[dict[str, Any]], str | None], ...] = (
    _conversation,
    _field("extendedTextMessage", "text"),
    _field("imageMessage", "caption"),
    _field("videoMessage", "caption"),
    _field("documentMessage", "caption"),
)


def extract_text(content: dict[str, Any] | None) -> str:
    """First non-empty text among the known sources, or ""."""
    inner = unwrap(content)
    for extractor in TEXT_EXTRACTORS:
        value = extractor(inner)
        if value:
            return value
    return ""


def _string_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item)


def _parse_context_info(raw: dict[str, Any]) -> ContextInfo:
    quoted = bool(_as_dict(raw.get("quotedMessage")) or raw.get("stanzaId"))
    participant = raw.get("participant")
    return ContextInfo(
        mentioned_jids=_string_list(raw.get("mentionedJid")),
        mentioned_lids=_string_list(raw.get("mentionedLid")),
        quoted=quoted,
        quoted_participant=participant if isinstance(participant, str) else None,
    )


def extract_context_info(content: dict[str, Any] | None) -> ContextInfo | None:
    """Context info of the innermost payload, or None when absent."""
    inner = unwrap(content)
    for kind in _CONTEXT_CARRIERS:
        payload = _as_dict(inner.get(kind))
        if payload is None:
            continue
        raw = _as_dict(payload.get("contextInfo"))
        if raw is not None:
            return _parse_context_info(raw)
    raw = _as_dict(inner.get("contextInfo"))
    if raw is not None:
        return _parse_context_info(raw)
    return None


def message_kind(content: dict[str, Any] | None) -> str:
    """Name of the innermost content kind (e.g. "imageMessage")."""
    inner = unwrap(content)
    for key in inner:
        if key not in ("contextInfo", "messageContextInfo"):
            return key
    return "unknown"


def extract(content: dict[str, Any] | None) -> ExtractedContent:
    """Text, mentions and quote flag of a raw content tree."""
    context = extract_context_info(content)
    if context is None:
        context = ContextInfo()
    return ExtractedContent(
        text=extract_text(content),
        kind=message_kind(content),
        mentioned_jids=context.mentioned_jids,
        mentioned_lids=context.mentioned_lids,
        quoted=context.quoted,
    )
