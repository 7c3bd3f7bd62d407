"""Backend session bound to an Evolution API instance.

Commands go over HTTP; events arrive through the ingress route
(POST /webhooks/evolution), which feeds them into this session's queue.

Required config (EvolutionSettings):
- EVOLUTION_BASE_URL: Base URL (e.g., http://localhost:8080)
- EVOLUTION_INSTANCE: Instance name
- EVOLUTION_API_KEY: API token
"""

import asyncio
import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, AsyncIterator

from wacollector.config import DEFAULT_EVENT_QUEUE_SIZE, EvolutionSettings
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.session.events import ConnectionStateChanged, PairingCodeIssued, SessionEvent

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 15


class EvolutionRequestError(Exception):
    """Raised when an Evolution API command fails."""

    pass


def _do_request(
    method: str, url: str, headers: dict[str, str], timeout: float
) -> Any:
    """Execute HTTP request and decode the JSON response. Raises on error."""
    req = urllib.request.Request(url, headers=headers, method=method)
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw) if raw.strip() else {}


class EvolutionSession:
    """One connection attempt against an Evolution instance."""

    def __init__(
        self,
        settings: EvolutionSettings,
        *,
        queue_size: int = DEFAULT_EVENT_QUEUE_SIZE,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _instance_path(self, prefix: str) -> str:
        return f"{prefix}/{urllib.parse.quote(self._settings.instance, safe='')}"

    async def _call(
        self, method: str, path: str, query: dict[str, str] | None = None
    ) -> Any:
        if not self._settings.is_configured():
            raise EvolutionRequestError(
                "Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY"
            )

        url = f"{self._settings.base_url}{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"
        headers = {
            "Content-Type": "application/json",
            "apikey": self._settings.api_key,
        }

        try:
            return await asyncio.to_thread(_do_request, method, url, headers, self._timeout)
        except urllib.error.HTTPError as e:
            raise EvolutionRequestError(f"{method} {path} returned {e.code}") from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise EvolutionRequestError(f"{method} {path} failed: {type(e).__name__}") from e

    async def connect(self) -> None:
        """Ask the instance to connect; a returned QR code becomes a pairing event."""
        body = await self._call("GET", self._instance_path("/instance/connect"))
        if not isinstance(body, dict):
            return

        code = body.get("code")
        if isinstance(code, str) and code:
            self.feed(PairingCodeIssued(code=code))

        instance = body.get("instance")
        state = instance.get("state") if isinstance(instance, dict) else None
        if state == "open":
            # already linked; no connection.update will follow for this call
            self.feed(ConnectionStateChanged(connection="open"))

        logger.info(
            "evolution connect requested",
            extra={"extra_fields": safe_log_context(has_code=bool(code), state=state)},
        )

    def feed(self, event: SessionEvent) -> bool:
        """Queue one event from the ingress. Returns False if dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "session event queue full; event dropped",
                extra={"extra_fields": safe_log_context(event=type(event).__name__)},
            )
            return False
        return True

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def group_metadata(self, group_id: str) -> dict[str, Any]:
        body = await self._call(
            "GET", self._instance_path("/group/findGroupInfos"), {"groupJid": group_id}
        )
        if not isinstance(body, dict):
            raise EvolutionRequestError("unexpected group metadata shape")
        return body

    async def logout(self) -> None:
        await self._call("DELETE", self._instance_path("/instance/logout"))
        logger.info("evolution instance logged out")

    async def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            # make room for the end-of-stream marker
            self._queue.get_nowait()
        self._queue.put_nowait(None)
