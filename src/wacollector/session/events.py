"""Typed events emitted by a backend session."""

from dataclasses import dataclass
from typing import Union

from wacollector.whatsapp.models import InboundMessage

# Batch types as reported by the backend; only live notifications are processed
BATCH_NOTIFY = "notify"
BATCH_APPEND = "append"


@dataclass(frozen=True)
class PairingCodeIssued:
    """A new pairing (QR) code is available for linking the device."""

    code: str


@dataclass(frozen=True)
class ConnectionStateChanged:
    """Backend connection transition.

    `connection` is one of "connecting", "open", "close". `status_code` is the
    disconnect diagnostic code on close (401 logged out, 515 restart required).
    """

    connection: str
    status_code: int | None = None
    self_id: str | None = None
    self_lid: str | None = None
    self_name: str | None = None


@dataclass(frozen=True)
class MessageBatchReceived:
    """A delivery unit of zero or more messages."""

    messages: tuple[InboundMessage, ...]
    batch_type: str = BATCH_NOTIFY

    @property
    def is_live(self) -> bool:
        return self.batch_type == BATCH_NOTIFY


SessionEvent = Union[PairingCodeIssued, ConnectionStateChanged, MessageBatchReceived]
