"""WhatsApp addressing: JID parsing and owner identity matching.

A JID looks like ``user[:device]@server``. Two addressing schemes matter:

- phone form: ``5511999998888@s.whatsapp.net`` (legacy ``@c.us``)
- opaque form (LID): ``123456789012345@lid``

Either may carry a device suffix (``:7``). Phone and opaque forms of the
same account are not derivable from each other; they only match through an
operator-supplied alias.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Literal

Addressing = Literal["phone", "opaque"]

PHONE_SERVERS = frozenset({"s.whatsapp.net", "c.us"})
OPAQUE_SERVER = "lid"
GROUP_SERVER = "g.us"

_NON_DIGITS = re.compile(r"\D")


def split_jid(token: str | None) -> tuple[str, str]:
    """Split ``user@server`` into its parts. Server is "" for bare tokens."""
    user, _, server = (token or "").strip().partition("@")
    return user, server.lower()


def _strip_device(user: str) -> str:
    return user.split(":", 1)[0]


def canonicalize_phone(token: str | None) -> str:
    """Digits-only phone form: drops the server, the device suffix and any non-digit.

    >>> canonicalize_phone("+55 (11) 99999-8888")
    '5511999998888'
    >>> canonicalize_phone("5511999998888:12@s.whatsapp.net")
    '5511999998888'
    """
    user, _ = split_jid(token)
    return _NON_DIGITS.sub("", _strip_device(user))


def canonicalize_opaque(token: str | None) -> str:
    """Base opaque identifier: drops the server and then the device suffix.

    >>> canonicalize_opaque("12345:7@lid")
    '12345'
    """
    user, _ = split_jid(token)
    return _strip_device(user)


def addressing_of(token: str | None) -> Addressing | None:
    """Addressing scheme implied by the server part; None for bare tokens."""
    _, server = split_jid(token)
    if server in PHONE_SERVERS:
        return "phone"
    if server == OPAQUE_SERVER:
        return "opaque"
    return None


def is_group(chat_id: str | None) -> bool:
    return split_jid(chat_id)[1] == GROUP_SERVER


def phone_of(*tokens: str | None) -> str | None:
    """First phone-addressed token's canonical digits, or None."""
    for token in tokens:
        if token and addressing_of(token) == "phone":
            digits = canonicalize_phone(token)
            if digits:
                return digits
    return None


@dataclass
class OwnerIdentity:
    """Who "I" am: the account whose mentions make a message relevant.

    Configured values (owner phone, opaque base, aliases) are fixed for the
    process lifetime. Values learned from the session fill the gaps and are
    written once; a later session reporting a different phone replaces them.
    """

    phone: str | None = None
    opaque: str | None = None
    display_name: str | None = None
    session_name: str | None = None
    aliases: frozenset[str] = field(default_factory=frozenset)
    phone_configured: bool = False
    opaque_configured: bool = False

    @classmethod
    def from_config(
        cls,
        *,
        phone: str | None = None,
        opaque: str | None = None,
        aliases: Iterable[str] = (),
        display_name: str | None = None,
    ) -> "OwnerIdentity":
        canonical_phone = canonicalize_phone(phone) or None
        canonical_opaque = canonicalize_opaque(opaque) or None
        alias_set = set()
        for alias in aliases:
            alias_set.update(_alias_forms(alias))
        return cls(
            phone=canonical_phone,
            opaque=canonical_opaque,
            display_name=display_name,
            aliases=frozenset(alias_set),
            phone_configured=canonical_phone is not None,
            opaque_configured=canonical_opaque is not None,
        )

    def is_known(self) -> bool:
        return bool(self.phone or self.opaque or self.aliases)

    def set_owner(
        self,
        self_id: str | None,
        self_lid: str | None = None,
        name: str | None = None,
    ) -> bool:
        """Record the session's self-reported identity. Returns True if anything changed."""
        changed = False

        new_phone = canonicalize_phone(self_id) if addressing_of(self_id) != "opaque" else ""
        new_opaque = canonicalize_opaque(self_lid) if self_lid else ""
        if not new_opaque and addressing_of(self_id) == "opaque":
            new_opaque = canonicalize_opaque(self_id)

        if new_phone and not self.phone_configured and new_phone != self.phone:
            if self.phone is not None:
                # different account after a full reconnect; learned LID is stale too
                if not self.opaque_configured:
                    self.opaque = None
            self.phone = new_phone
            changed = True

        if new_opaque and not self.opaque_configured and self.opaque is None:
            self.opaque = new_opaque
            changed = True

        if name and not self.session_name:
            self.session_name = name
            changed = True

        return changed

    def matches(self, token: str | None) -> bool:
        """Whether one raw token denotes the owner."""
        if not token:
            return False
        kind = addressing_of(token)
        if kind in (None, "phone") and self.phone:
            if canonicalize_phone(token) == self.phone:
                return True
        if kind in (None, "opaque") and self.opaque:
            if canonicalize_opaque(token) == self.opaque:
                return True
        if self.aliases and canonicalize_opaque(token) in self.aliases:
            return True
        return False

    def is_referenced(self, tokens: Iterable[str]) -> bool:
        """True if any referenced identity resolves to the owner."""
        if not self.is_known():
            return False
        return any(self.matches(token) for token in tokens)

    def mentioned_in_text(self, text: str) -> bool:
        """Textual fallback: the owner's phone digits appear in the message digits."""
        if not self.phone or not text:
            return False
        return self.phone in _NON_DIGITS.sub("", text)

    def display_form(self) -> str:
        """Human-readable replacement for the owner's mention tokens."""
        return self.display_name or self.phone or self.session_name or ""


def _alias_forms(alias: str) -> set[str]:
    """Alias tokens compared by their device-less user part."""
    base = canonicalize_opaque(alias)
    forms = {base} if base else set()
    digits = canonicalize_phone(alias)
    if digits:
        forms.add(digits)
    return forms
