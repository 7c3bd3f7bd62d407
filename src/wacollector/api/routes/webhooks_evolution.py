"""Evolution API event ingress.

The Evolution instance posts every event here; events are validated, mapped
to session events and queued on the current session. Processing happens
asynchronously, so this route answers as soon as the event is queued.
Logs contain NO PII.
"""

import hmac
from typing import Any

from fastapi import APIRouter, Depends, Header, Request, Response

from wacollector.api.deps import get_runtime
from wacollector.observability.correlation import get_correlation_id
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.runtime import Runtime
from wacollector.whatsapp.evolution_adapter import InvalidPayloadError, parse_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive one Evolution API event.

    Returns:
        200 "ok" if queued, "ignored" if not consumed, "dropped" if the queue
        refused it.
        400 Bad Request if body or shape is invalid.
        401 Unauthorized if secret validation fails.
    """
    correlation_id = get_correlation_id()

    expected_secret = runtime.settings.evolution.webhook_secret
    if expected_secret and (
        not x_webhook_secret
        or not hmac.compare_digest(x_webhook_secret.encode(), expected_secret.encode())
    ):
        logger.warning(
            "evolution event secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")

    try:
        body: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        event = parse_event(body)
    except InvalidPayloadError as e:
        logger.warning(
            "invalid evolution event shape",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, reason=str(e)
                )
            },
        )
        return Response(status_code=400, content="invalid payload shape")

    if event is None:
        return Response(status_code=200, content="ignored")

    if not runtime.controller.feed(event):
        return Response(status_code=200, content="dropped")

    logger.debug(
        "evolution event queued",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id, event=type(event).__name__
            )
        },
    )
    return Response(status_code=200, content="ok")
