"""Per-message pipeline: group filter, extraction, classification, relay.

Messages of one batch are handled strictly in order; a failure in one
message is logged and the next message proceeds.
Security: NEVER log message text, sender or group ids.
"""

from dataclasses import dataclass
from typing import Iterable, Literal

from wacollector.domain.relevance import Decision, RelevancePolicy, classify
from wacollector.infra.group_names import GroupNameCache
from wacollector.infra.webhook_relay import WebhookRelay
from wacollector.observability.correlation import bound_correlation_id
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import id_prefix, safe_log_context
from wacollector.whatsapp.extractor import extract
from wacollector.whatsapp.jid import OwnerIdentity, is_group, phone_of
from wacollector.whatsapp.models import InboundMessage, OutboundPayload

logger = get_logger(__name__)

Status = Literal["not_group", "dropped", "forwarded", "delivery_failed", "error"]


@dataclass(frozen=True)
class ForwardOutcome:
    """What happened to one message."""

    status: Status
    decision: Decision | None = None
    payload: OutboundPayload | None = None


def sender_number(msg: InboundMessage) -> str | None:
    """Canonical phone of the sender, if any of its addresses is phone-form."""
    return phone_of(msg.sender, msg.sender_alt)


def sender_name(msg: InboundMessage) -> str:
    return msg.push_name or sender_number(msg) or msg.sender


class MessageForwarder:
    """Decides and forwards group messages relevant to the owner."""

    def __init__(
        self,
        owner: OwnerIdentity,
        policy: RelevancePolicy,
        group_names: GroupNameCache,
        relay: WebhookRelay,
        *,
        include_debug_fields: bool = False,
    ) -> None:
        self._owner = owner
        self._policy = policy
        self._group_names = group_names
        self._relay = relay
        self._include_debug_fields = include_debug_fields

    async def process_batch(self, messages: Iterable[InboundMessage]) -> list[ForwardOutcome]:
        """Handle each message in order; errors stay local to their message."""
        outcomes: list[ForwardOutcome] = []
        for msg in messages:
            try:
                outcomes.append(await self.process_message(msg))
            except Exception:
                logger.exception(
                    "failed processing message",
                    extra={
                        "extra_fields": safe_log_context(
                            message_id_prefix=id_prefix(getattr(msg, "message_id", None))
                        )
                    },
                )
                outcomes.append(ForwardOutcome(status="error"))
        return outcomes

    async def process_message(self, msg: InboundMessage) -> ForwardOutcome:
        with bound_correlation_id(msg.message_id):
            if not is_group(msg.chat_id):
                return ForwardOutcome(status="not_group")

            content = extract(msg.content)
            decision = classify(content, self._owner, self._policy)

            logger.info(
                "message classified",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(msg.message_id),
                        kind=content.kind,
                        forward=decision.forward,
                        reason=decision.reason,
                        text_len=len(content.text),
                    )
                },
            )

            if not decision.forward:
                return ForwardOutcome(status="dropped", decision=decision)

            group_name = await self._group_names.resolve_name(msg.chat_id)
            payload = OutboundPayload(
                message_id=msg.message_id,
                group_id=msg.chat_id,
                group_name=group_name,
                sender_name=sender_name(msg),
                sender_number=sender_number(msg),
                text=decision.text,
                mentioned_jids=content.mentioned_jids if self._include_debug_fields else None,
                mentioned_lids=content.mentioned_lids if self._include_debug_fields else None,
            )

            delivered = await self._relay.deliver(payload)
            return ForwardOutcome(
                status="forwarded" if delivered else "delivery_failed",
                decision=decision,
                payload=payload,
            )
