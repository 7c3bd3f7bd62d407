"""Forwarding policy for group messages.

Deterministic, no I/O. Security: NEVER log raw text (PII).
"""

import re
from dataclasses import dataclass
from typing import Literal

from wacollector.whatsapp.jid import OwnerIdentity
from wacollector.whatsapp.models import ExtractedContent

Reason = Literal["forward_all", "quoted", "mention", "pattern", "no_match"]

# Mention tokens as they appear in message text: "@5511999998888", "@123456:7"
_MENTION_TOKEN = re.compile(r"@(\d+(?::\d+)?)")


@dataclass(frozen=True)
class RelevancePolicy:
    """Operator-configured forwarding switches."""

    forward_all: bool = False
    pattern: re.Pattern[str] | None = None
    ignore_quoted: bool = False
    text_fallback: bool = True


@dataclass(frozen=True)
class MentionMatch:
    """How (if at all) the owner was referenced."""

    by_identity: bool = False
    by_text: bool = False

    @property
    def any(self) -> bool:
        return self.by_identity or self.by_text


@dataclass(frozen=True)
class Decision:
    """Classification outcome. `text` is the text to forward (rewritten)."""

    forward: bool
    reason: Reason
    text: str
    mention: MentionMatch


def detect_owner_mention(
    content: ExtractedContent,
    owner: OwnerIdentity,
    *,
    text_fallback: bool = True,
) -> MentionMatch:
    """Resolve whether the owner was referenced by explicit mention or by text."""
    by_identity = owner.is_referenced(content.referenced)
    by_text = text_fallback and owner.mentioned_in_text(content.text)
    return MentionMatch(by_identity=by_identity, by_text=by_text)


def rewrite_owner_mentions(text: str, owner: OwnerIdentity) -> str:
    """Replace "@<token>" mentions that resolve to the owner with its display form.

    Only matched mention tokens change; every other substring is preserved.
    """
    display = owner.display_form()
    if not text or not display:
        return text

    def _replace(match: re.Match[str]) -> str:
        if owner.matches(match.group(1)):
            return f"@{display}"
        return match.group(0)

    return _MENTION_TOKEN.sub(_replace, text)


def classify(
    content: ExtractedContent,
    owner: OwnerIdentity,
    policy: RelevancePolicy,
) -> Decision:
    """Apply the forwarding policy, first rule wins.

    1. forward_all
    2. quoted message while ignore_quoted -> drop
    3. owner referenced
    4. pattern matches text
    5. drop
    """
    mention = detect_owner_mention(content, owner, text_fallback=policy.text_fallback)
    text = content.text

    if policy.forward_all:
        return Decision(True, "forward_all", _forwarded_text(text, owner, mention), mention)

    if policy.ignore_quoted and content.quoted:
        return Decision(False, "quoted", text, mention)

    if mention.any:
        return Decision(True, "mention", _forwarded_text(text, owner, mention), mention)

    if policy.pattern is not None and policy.pattern.search(text):
        return Decision(True, "pattern", text, mention)

    return Decision(False, "no_match", text, mention)


def _forwarded_text(text: str, owner: OwnerIdentity, mention: MentionMatch) -> str:
    if not mention.any:
        return text
    return rewrite_owner_mentions(text, owner)
