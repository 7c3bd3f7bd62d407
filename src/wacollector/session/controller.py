"""Connection lifecycle controller for the single backend session.

State machine:

    idle -> connecting -> open -> close -> connecting ...
                                      \-> logged-out (terminal)

Close codes: 401 means the device was logged out (terminal, no reconnect
until an administrative reset); 515 means the backend wants a fresh
handshake (new session after a short delay, or process exit when configured);
anything else is transient (reconnect after a short delay). Reconnects are
unbounded, fixed-delay and single-flight.
"""

import asyncio
import os
from typing import Any, Awaitable, Callable

from wacollector.config import RestartMode
from wacollector.infra.credentials import CredentialStore, SelfIdentity
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.whatsapp.models import InboundMessage

from .client import EventSink, Session, SessionFactory, SessionUnavailableError
from .context import ConnectionState, SessionContext
from .events import (
    ConnectionStateChanged,
    MessageBatchReceived,
    PairingCodeIssued,
    SessionEvent,
)

logger = get_logger(__name__)

LOGGED_OUT_CODES = frozenset({401})
RESTART_REQUIRED_CODE = 515

# Grace period so the triggering HTTP response (and logs) get out before exit
ADMIN_EXIT_DELAY = 0.2
RESTART_EXIT_DELAY = 0.1

BatchHandler = Callable[[tuple[InboundMessage, ...]], Awaitable[Any]]


class ConnectionController:
    """Owns the session handle and drives SessionContext transitions."""

    def __init__(
        self,
        context: SessionContext,
        session_factory: SessionFactory,
        on_batch: BatchHandler,
        *,
        restart_mode: RestartMode = "inprocess",
        reconnect_delay: float = 1.0,
        restart_delay: float = 1.0,
        credentials: CredentialStore | None = None,
        exit_process: Callable[[int], None] = os._exit,
    ) -> None:
        self.context = context
        self._factory = session_factory
        self._on_batch = on_batch
        self._restart_mode = restart_mode
        self._reconnect_delay = reconnect_delay
        self._restart_delay = restart_delay
        self._credentials = credentials
        self._exit_process = exit_process

        self._session: Session | None = None
        self._consumer: asyncio.Task | None = None
        self._reconnecting = False
        self._reconnect_task: asyncio.Task | None = None
        self._batch_tasks: set[asyncio.Task] = set()
        self.reconnects_scheduled = 0

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnecting

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Initial connect. Any failure is fatal: logged, then the process exits non-zero."""
        try:
            session = self._install_session()
            await session.connect()
        except Exception:
            logger.exception("fatal error in connect")
            self._exit_process(1)

    async def stop(self) -> None:
        """End the current session and wait for in-flight batches."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        await self._end_current()
        await self.drain()

    async def drain(self) -> None:
        """Wait until every spawned batch task has finished."""
        while self._batch_tasks:
            await asyncio.gather(*list(self._batch_tasks), return_exceptions=True)

    def _install_session(self) -> Session:
        session = self._factory()
        self._session = session
        self._set_state(ConnectionState.CONNECTING)
        self._consumer = asyncio.create_task(self._consume(session))
        return session

    async def _end_current(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            await session.end()
        except Exception as e:
            logger.warning(
                "error ending session",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )

    async def _consume(self, session: Session) -> None:
        async for event in session.events():
            if session is not self._session:
                # replaced while we were waiting; its events are stale
                break
            await self.handle_event(event)

    # -- events ------------------------------------------------------------

    def feed(self, event: SessionEvent) -> bool:
        """Hand an externally received event to the current session's queue."""
        session = self._session
        if not isinstance(session, EventSink):
            logger.warning("event received with no session able to accept it")
            return False
        return session.feed(event)

    async def handle_event(self, event: SessionEvent) -> None:
        """Apply one session event. Never raises."""
        try:
            if isinstance(event, PairingCodeIssued):
                self._on_pairing_code(event)
            elif isinstance(event, ConnectionStateChanged):
                self._on_connection(event)
            elif isinstance(event, MessageBatchReceived):
                self._on_messages(event)
        except Exception:
            logger.exception(
                "failed handling session event",
                extra={"extra_fields": safe_log_context(event=type(event).__name__)},
            )

    def _on_pairing_code(self, event: PairingCodeIssued) -> None:
        if self.context.state is not ConnectionState.CONNECTING:
            logger.info(
                "pairing code ignored",
                extra={"extra_fields": safe_log_context(state=self.context.status)},
            )
            return
        self.context.pairing_token = event.code
        logger.info("pairing code available")

    def _on_connection(self, event: ConnectionStateChanged) -> None:
        connection = event.connection
        if connection == "open":
            self._on_open(event)
        elif connection == "close":
            self._on_close(event.status_code)
        elif connection == "connecting":
            if self.context.state is ConnectionState.LOGGED_OUT:
                return
            self._set_state(ConnectionState.CONNECTING)
        else:
            logger.info(
                "unknown connection state ignored",
                extra={"extra_fields": safe_log_context(connection=connection)},
            )

    def _on_open(self, event: ConnectionStateChanged) -> None:
        if self.context.state is ConnectionState.LOGGED_OUT:
            # only an administrative reset leaves logged-out
            logger.warning("open ignored while logged out")
            return
        self.context.pairing_token = None
        self._set_state(ConnectionState.OPEN)

        owner = self.context.owner
        if owner.set_owner(event.self_id, event.self_lid, event.self_name):
            logger.info(
                "owner identity detected",
                extra={
                    "extra_fields": safe_log_context(
                        has_phone=owner.phone is not None,
                        has_lid=owner.opaque is not None,
                    )
                },
            )

        if self._credentials is not None and (event.self_id or event.self_lid):
            try:
                self._credentials.save_self(
                    SelfIdentity(id=event.self_id, lid=event.self_lid, name=event.self_name)
                )
            except OSError as e:
                logger.warning(
                    "could not persist self identity",
                    extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
                )

    def _on_close(self, code: int | None) -> None:
        self.context.last_disconnect_code = code
        logger.warning(
            "connection closed", extra={"extra_fields": safe_log_context(code=code)}
        )

        if self.context.state is ConnectionState.LOGGED_OUT:
            return

        if code in LOGGED_OUT_CODES:
            self.context.pairing_token = None
            self._set_state(ConnectionState.LOGGED_OUT)
            logger.warning("logged out; reset credentials to get a new pairing code")
            return

        self._set_state(ConnectionState.CLOSED)

        if code == RESTART_REQUIRED_CODE:
            logger.warning(
                "restart required by backend",
                extra={"extra_fields": safe_log_context(mode=self._restart_mode)},
            )
            if self._restart_mode == "exit":
                self.schedule_exit(0, RESTART_EXIT_DELAY)
                return
            self.schedule_reconnect(self._restart_delay, reason="restart_required")
            return

        self.schedule_reconnect(self._reconnect_delay, reason="transient")

    def _on_messages(self, event: MessageBatchReceived) -> None:
        if not event.is_live:
            logger.debug(
                "non-live batch ignored",
                extra={"extra_fields": safe_log_context(batch_type=event.batch_type)},
            )
            return
        if not event.messages:
            return
        # do not block the event source on handler completion
        task = asyncio.create_task(self._on_batch(event.messages))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    # -- reconnect ---------------------------------------------------------

    def schedule_reconnect(self, delay: float, *, reason: str) -> bool:
        """Schedule a new session after ``delay``. No-op if one is already pending."""
        if self._reconnecting:
            logger.info(
                "reconnect already pending",
                extra={"extra_fields": safe_log_context(reason=reason)},
            )
            return False
        if self.context.state is ConnectionState.LOGGED_OUT:
            return False

        self._reconnecting = True
        self.reconnects_scheduled += 1
        self._reconnect_task = asyncio.create_task(self._reconnect(delay, reason))
        return True

    async def _reconnect(self, delay: float, reason: str) -> None:
        try:
            await self._end_current()
            await asyncio.sleep(delay)
            logger.info(
                "recreating session",
                extra={"extra_fields": safe_log_context(reason=reason)},
            )
            session = self._install_session()
        except Exception:
            logger.exception("reconnect failed")
            self._reconnecting = False
            self.schedule_reconnect(self._reconnect_delay, reason="reconnect_failed")
            return

        # the new session is installed; its own close events may schedule again
        self._reconnecting = False
        try:
            await session.connect()
        except Exception:
            logger.exception("reconnect failed")
            if session is self._session:
                self._set_state(ConnectionState.CLOSED)
                self.schedule_reconnect(self._reconnect_delay, reason="reconnect_failed")

    # -- backend commands and admin actions --------------------------------

    async def group_metadata(self, group_id: str) -> dict[str, Any]:
        """Group metadata through whichever session is current."""
        session = self._session
        if session is None:
            raise SessionUnavailableError("no session")
        return await session.group_metadata(group_id)

    async def reset(self) -> None:
        """Log out (best effort), wipe credentials and exit shortly after."""
        session = self._session
        if session is not None:
            try:
                await session.logout()
            except Exception as e:
                logger.warning(
                    "logout failed during reset",
                    extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
                )
        if self._credentials is not None:
            self._credentials.wipe()
        self.context.pairing_token = None
        self.schedule_exit(0, ADMIN_EXIT_DELAY)

    async def restart(self) -> None:
        """Exit shortly so the supervisor restarts the process; session is kept."""
        self.schedule_exit(0, ADMIN_EXIT_DELAY)

    def schedule_exit(self, code: int, delay: float) -> None:
        logger.warning(
            "process exit scheduled",
            extra={"extra_fields": safe_log_context(code=code, delay=delay)},
        )
        asyncio.get_running_loop().call_later(delay, self._exit_process, code)

    def _set_state(self, state: ConnectionState) -> None:
        if self.context.state is state:
            return
        self.context.state = state
        logger.info(
            "connection update",
            extra={"extra_fields": safe_log_context(connection=state.value)},
        )
