"""Evolution API adapter - validate webhook payloads and map them to session events."""

from typing import Any

from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.session.events import (
    BATCH_APPEND,
    BATCH_NOTIFY,
    ConnectionStateChanged,
    MessageBatchReceived,
    PairingCodeIssued,
    SessionEvent,
)

from .models import InboundMessage

logger = get_logger(__name__)

EVENT_QRCODE_UPDATED = "qrcode.updated"
EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_MESSAGES_UPSERT = "messages.upsert"
EVENT_MESSAGES_SET = "messages.set"

# Key fields carrying the phone-form address when the sender is LID-addressed
_ALT_SENDER_KEYS = ("participantAlt", "participantPn", "remoteJidAlt", "senderPn")


class InvalidPayloadError(Exception):
    """Raised when Evolution payload has invalid shape."""

    pass


def normalize_event_name(name: Any) -> str:
    """'MESSAGES_UPSERT' and 'messages.upsert' both become 'messages.upsert'."""
    if not isinstance(name, str):
        return ""
    return name.strip().lower().replace("_", ".")


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, dict):
        # protobuf Long serialized as {"low": ..., "high": ..., "unsigned": ...}
        return _opt_int(value.get("low"))
    return None


def parse_message(raw: dict[str, Any]) -> InboundMessage:
    """Validate one Evolution message record and build an InboundMessage.

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    if not isinstance(raw, dict):
        raise InvalidPayloadError("message record is not an object")

    key = raw.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("missing key")

    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    remote_jid = key.get("remoteJid", "")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    sender = _opt_str(key.get("participant")) or remote_jid
    sender_alt = None
    for alt_key in _ALT_SENDER_KEYS:
        sender_alt = _opt_str(key.get(alt_key))
        if sender_alt:
            break

    content = raw.get("message")

    return InboundMessage(
        message_id=message_id,
        chat_id=remote_jid,
        sender=sender,
        sender_alt=sender_alt,
        push_name=_opt_str(raw.get("pushName")),
        content=content if isinstance(content, dict) else {},
        timestamp=_opt_int(raw.get("messageTimestamp")),
        from_me=key.get("fromMe") is True,
    )


def _message_records(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        messages = data.get("messages")
        if isinstance(messages, list):
            return messages
        if "key" in data:
            return [data]
    raise InvalidPayloadError("missing message records")


def _parse_batch(data: Any, default_type: str) -> MessageBatchReceived:
    batch_type = default_type
    if isinstance(data, dict) and isinstance(data.get("type"), str):
        batch_type = data["type"]
    messages: list[InboundMessage] = []
    for record in _message_records(data):
        # one malformed record must not drop the rest of the batch
        try:
            messages.append(parse_message(record))
        except InvalidPayloadError as e:
            logger.warning(
                "skipping invalid message record",
                extra={"extra_fields": safe_log_context(reason=str(e))},
            )
    return MessageBatchReceived(messages=tuple(messages), batch_type=batch_type)


def _parse_connection(payload: dict[str, Any], data: dict[str, Any]) -> ConnectionStateChanged:
    state = data.get("state") or data.get("connection")
    if not isinstance(state, str) or not state:
        raise InvalidPayloadError("missing connection state")
    return ConnectionStateChanged(
        connection=state.lower(),
        status_code=_opt_int(data.get("statusReason")),
        self_id=_opt_str(data.get("wuid")) or _opt_str(payload.get("sender")),
        self_lid=_opt_str(data.get("lid")),
        self_name=_opt_str(data.get("profileName")),
    )


def _parse_qrcode(data: dict[str, Any]) -> PairingCodeIssued | None:
    qrcode = data.get("qrcode") if isinstance(data.get("qrcode"), dict) else data
    code = _opt_str(qrcode.get("code"))
    if code is None:
        return None
    return PairingCodeIssued(code=code)


def parse_event(payload: dict[str, Any]) -> SessionEvent | None:
    """Map an Evolution webhook payload to a session event.

    Returns None for events this service does not consume.

    Raises:
        InvalidPayloadError: If a consumed event has an invalid shape.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload is not an object")

    name = normalize_event_name(payload.get("event"))
    data = payload.get("data")

    if name == EVENT_MESSAGES_UPSERT:
        return _parse_batch(data, BATCH_NOTIFY)
    if name == EVENT_MESSAGES_SET:
        return _parse_batch(data, BATCH_APPEND)

    if name not in (EVENT_CONNECTION_UPDATE, EVENT_QRCODE_UPDATED):
        return None
    if not isinstance(data, dict):
        raise InvalidPayloadError("missing data")

    if name == EVENT_CONNECTION_UPDATE:
        return _parse_connection(payload, data)
    return _parse_qrcode(data)
