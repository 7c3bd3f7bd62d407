"""Forwarding of relevant messages to the ingestion webhook.

Best effort, at most one attempt per message: failures are logged and
dropped, never retried and never raised to the caller.
Security: NEVER log the payload text or sender. Only log id prefixes and lengths.
"""

import asyncio
import json
import urllib.error
import urllib.request

from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import id_prefix, safe_log_context, truncate_body
from wacollector.whatsapp.models import OutboundPayload

logger = get_logger(__name__)

# Default timeout for the POST (seconds)
HTTP_TIMEOUT = 10.0

SECRET_HEADER = "x-webhook-secret"


def _do_request(
    url: str, data: bytes, headers: dict[str, str], timeout: float
) -> tuple[int, str]:
    """Execute HTTP POST. Returns (status, body); raises HTTPError on non-2xx."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        return resp.status, resp.read().decode("utf-8", errors="replace")


def _read_error_body(error: urllib.error.HTTPError) -> str:
    try:
        return error.read().decode("utf-8", errors="replace")
    except Exception:
        return ""


class WebhookRelay:
    """POSTs OutboundPayloads as JSON to a fixed endpoint."""

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._secret:
            headers[SECRET_HEADER] = self._secret
        return headers

    def send(self, payload: OutboundPayload) -> bool:
        """Blocking single delivery attempt. Returns True on 2xx."""
        data = json.dumps(payload.to_dict(), ensure_ascii=False).encode("utf-8")

        log_ctx = safe_log_context(
            message_id_prefix=id_prefix(payload.message_id),
            text_len=len(payload.text),
        )

        try:
            status, _ = _do_request(self._url, data, self._headers(), self._timeout)
        except urllib.error.HTTPError as e:
            logger.warning(
                "ingest not ok",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        **safe_log_context(status=e.code),
                        "body": truncate_body(_read_error_body(e)),
                    }
                },
            )
            return False
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.error(
                "failed to post to ingest",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        **safe_log_context(error_type=type(e).__name__),
                    }
                },
            )
            return False

        if not 200 <= status < 300:
            logger.warning(
                "ingest not ok",
                extra={"extra_fields": {**log_ctx, **safe_log_context(status=status)}},
            )
            return False

        logger.info(
            "message forwarded",
            extra={"extra_fields": {**log_ctx, **safe_log_context(status=status)}},
        )
        return True

    async def deliver(self, payload: OutboundPayload) -> bool:
        """Non-blocking wrapper around ``send``; never raises."""
        try:
            return await asyncio.to_thread(self.send, payload)
        except Exception:
            logger.exception(
                "unexpected delivery failure",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(payload.message_id)
                    )
                },
            )
            return False
