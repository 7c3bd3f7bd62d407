"""Contract between the lifecycle controller and a backend session."""

from typing import Any, AsyncIterator, Callable, Protocol, runtime_checkable

from .events import SessionEvent


class SessionUnavailableError(Exception):
    """Raised when a backend command is issued while no session exists."""

    pass


@runtime_checkable
class EventSink(Protocol):
    """Sessions whose events are pushed in from outside (e.g. an HTTP ingress)."""

    def feed(self, event: SessionEvent) -> bool:
        """Queue one event. Returns False if it was dropped."""
        ...


class Session(Protocol):
    """One connection attempt against the backend.

    A session is never reused: the controller ends it and creates a new one
    on reconnect.
    """

    async def connect(self) -> None:
        """Start the connection handshake. Raises on failure."""
        ...

    def events(self) -> AsyncIterator[SessionEvent]:
        """Stream of events until the session is ended."""
        ...

    async def group_metadata(self, group_id: str) -> dict[str, Any]:
        """Metadata of a group (at least "subject"). Raises on failure."""
        ...

    async def logout(self) -> None:
        """Unlink the device from the account."""
        ...

    async def end(self) -> None:
        """Close the session and its event stream."""
        ...


SessionFactory = Callable[[], Session]
