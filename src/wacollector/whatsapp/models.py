"""WhatsApp message models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class InboundMessage:
    """One message as delivered by the backend, before any interpretation.

    ATTENTION PII:
    - `sender`, `sender_alt`, `push_name` and `content` are PII
    - Never log them; log `message_id` prefixes and lengths only
    """

    message_id: str
    chat_id: str
    sender: str
    content: dict[str, Any] = field(default_factory=dict)
    sender_alt: str | None = None
    push_name: str | None = None
    timestamp: int | None = None
    from_me: bool = False


@dataclass(frozen=True)
class ContextInfo:
    """Reference metadata attached to a message: mentions and quote markers."""

    mentioned_jids: tuple[str, ...] = ()
    mentioned_lids: tuple[str, ...] = ()
    quoted: bool = False
    quoted_participant: str | None = None


@dataclass(frozen=True)
class ExtractedContent:
    """Derived, pure view of a message content tree."""

    text: str = ""
    kind: str = "unknown"
    mentioned_jids: tuple[str, ...] = ()
    mentioned_lids: tuple[str, ...] = ()
    quoted: bool = False

    @property
    def referenced(self) -> frozenset[str]:
        """All raw identity tokens explicitly mentioned."""
        return frozenset(self.mentioned_jids) | frozenset(self.mentioned_lids)


@dataclass(frozen=True)
class OutboundPayload:
    """Body posted to the ingestion webhook for one forwarded message."""

    message_id: str
    group_id: str
    group_name: str
    sender_name: str
    sender_number: str | None
    text: str
    mentioned_jids: tuple[str, ...] | None = None
    mentioned_lids: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase keys, debug fields only when set)."""
        body: dict[str, Any] = {
            "messageId": self.message_id,
            "groupId": self.group_id,
            "groupName": self.group_name,
            "senderName": self.sender_name,
            "senderNumber": self.sender_number,
            "text": self.text,
        }
        if self.mentioned_jids is not None:
            body["mentionedJids"] = list(self.mentioned_jids)
        if self.mentioned_lids is not None:
            body["mentionedLids"] = list(self.mentioned_lids)
        return body
