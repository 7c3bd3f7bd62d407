"""Process-scoped session state shared with the control API."""

from dataclasses import dataclass, field
from enum import Enum

from wacollector.whatsapp.jid import OwnerIdentity


class ConnectionState(str, Enum):
    """Connection lifecycle states. Values are what /instance/status reports."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "close"
    LOGGED_OUT = "logged-out"


@dataclass
class SessionContext:
    """Single source of truth for the one session this process manages.

    Only the ConnectionController writes to it; the control API reads it
    through the accessors below.
    """

    owner: OwnerIdentity = field(default_factory=OwnerIdentity)
    state: ConnectionState = ConnectionState.IDLE
    pairing_token: str | None = None
    last_disconnect_code: int | None = None

    @property
    def status(self) -> str:
        return self.state.value

    @property
    def has_pairing_token(self) -> bool:
        return bool(self.pairing_token)

    def snapshot(self) -> dict:
        """Status document for the control API."""
        return {"status": self.status, "hasQR": self.has_pairing_token}
