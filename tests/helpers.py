"""Shared test helpers for wa-collector tests.

This module contains fakes and builders that can be imported by both
conftest.py and individual test files. These are NOT fixtures.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

from wacollector.config import Settings
from wacollector.whatsapp.models import InboundMessage, OutboundPayload

GROUP_JID = "120363000000000001@g.us"
OWNER_PHONE = "5511999998888"
OWNER_JID = f"{OWNER_PHONE}@s.whatsapp.net"
OWNER_LID = "98765432101234"
SENDER_JID = "5511888887777@s.whatsapp.net"


def make_settings(**overrides: Any) -> Settings:
    """Settings suitable for tests: no delays, fake ingest URL."""
    base = Settings(
        webhook_url="http://ingest.test/hook",
        reconnect_delay=0.0,
        restart_delay=0.0,
    )
    return replace(base, **overrides)


def group_message(
    *,
    message_id: str = "MSG001",
    text: str = "hello",
    mentions: tuple[str, ...] = (),
    lids: tuple[str, ...] = (),
    quoted: bool = False,
    chat_id: str = GROUP_JID,
    sender: str = SENDER_JID,
    sender_alt: str | None = None,
    push_name: str | None = "Maria",
) -> InboundMessage:
    """Extended-text group message with optional mentions/quote."""
    context: dict[str, Any] = {}
    if mentions:
        context["mentionedJid"] = list(mentions)
    if lids:
        context["mentionedLid"] = list(lids)
    if quoted:
        context["stanzaId"] = "QUOTED01"
        context["quotedMessage"] = {"conversation": "earlier message"}

    content: dict[str, Any] = {"extendedTextMessage": {"text": text}}
    if context:
        content["extendedTextMessage"]["contextInfo"] = context

    return InboundMessage(
        message_id=message_id,
        chat_id=chat_id,
        sender=sender,
        sender_alt=sender_alt,
        push_name=push_name,
        content=content,
    )


class FakeSession:
    """In-memory Session: events are fed by the test."""

    def __init__(
        self,
        *,
        connect_error: Exception | None = None,
        metadata: dict[str, Any] | None = None,
        metadata_error: Exception | None = None,
    ) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.connect_error = connect_error
        self.metadata = metadata if metadata is not None else {"subject": "Equipe"}
        self.metadata_error = metadata_error
        self.connect_calls = 0
        self.metadata_calls: list[str] = []
        self.logged_out = False
        self.ended = False

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    def feed(self, event) -> bool:
        if self.ended:
            return False
        self._queue.put_nowait(event)
        return True

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def group_metadata(self, group_id: str) -> dict[str, Any]:
        self.metadata_calls.append(group_id)
        if self.metadata_error is not None:
            raise self.metadata_error
        return self.metadata

    async def logout(self) -> None:
        self.logged_out = True

    async def end(self) -> None:
        if not self.ended:
            self.ended = True
            self._queue.put_nowait(None)


class FakeSessionFactory:
    """Session factory recording every session it creates.

    `failing` holds the indexes of sessions whose connect() raises.
    """

    def __init__(self, *, failing: set[int] | None = None, **session_kwargs: Any) -> None:
        self.sessions: list[FakeSession] = []
        self._failing = failing or set()
        self._session_kwargs = session_kwargs

    def __call__(self) -> FakeSession:
        kwargs = dict(self._session_kwargs)
        if len(self.sessions) in self._failing:
            kwargs["connect_error"] = ConnectionError("backend unreachable")
        session = FakeSession(**kwargs)
        self.sessions.append(session)
        return session


class RecordingRelay:
    """Stand-in for WebhookRelay that records payloads."""

    def __init__(self, *, result: bool = True) -> None:
        self.payloads: list[OutboundPayload] = []
        self._result = result

    async def deliver(self, payload: OutboundPayload) -> bool:
        self.payloads.append(payload)
        return self._result


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def extra_fields(self, level: str) -> list[dict]:
        return [
            kwargs.get("extra", {}).get("extra_fields", {})
            for lvl, _, kwargs in self.calls
            if lvl == level
        ]


async def settle(controller, rounds: int = 10) -> None:
    """Await pending reconnect tasks, including ones scheduled by a failed attempt."""
    for _ in range(rounds):
        task = controller._reconnect_task
        if task is None or task.done():
            return
        await task
