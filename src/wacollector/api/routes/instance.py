"""Instance control routes: status, pairing code (JSON or PNG), reset and restart.

Reset and restart answer 202 first; the action runs after the response is
sent and ends with the process exiting.
"""

import io

import segno
from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from wacollector.api.deps import get_runtime, require_admin
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.runtime import Runtime

router = APIRouter(prefix="/instance", tags=["instance"])

logger = get_logger(__name__)

# Target edge length of the rendered pairing code, in pixels
QR_PNG_SIZE = 256


class InstanceStatus(BaseModel):
    status: str
    hasQR: bool


class ActionAccepted(BaseModel):
    ok: bool = True
    action: str


@router.get("/status", response_model=InstanceStatus)
def instance_status(runtime: Runtime = Depends(get_runtime)) -> InstanceStatus:
    """Last known connection state and whether a pairing code is available."""
    return InstanceStatus(**runtime.context.snapshot())


@router.get("/qr")
def instance_qr(runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    """Current pairing code, or 404 when none is available."""
    token = runtime.context.pairing_token
    if not token:
        return JSONResponse(status_code=404, content={"error": "no_qr"})
    return JSONResponse(status_code=200, content={"qr": token})


def render_qr_png(code: str, size: int = QR_PNG_SIZE) -> bytes:
    """PNG image of ``code``, scaled to roughly ``size`` pixels per side."""
    qr = segno.make_qr(code, error="m")
    width, _ = qr.symbol_size(scale=1)
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=max(1, size // width))
    return buf.getvalue()


@router.get("/qr.png")
def instance_qr_png(runtime: Runtime = Depends(get_runtime)) -> Response:
    """Current pairing code rendered as a PNG, or 404 when none is available."""
    token = runtime.context.pairing_token
    if not token:
        return JSONResponse(status_code=404, content={"error": "no_qr"})
    try:
        image = render_qr_png(token)
    except Exception as e:
        logger.error(
            "pairing code render failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return JSONResponse(status_code=500, content={"error": "qr_render_failed"})
    return Response(
        content=image,
        media_type="image/png",
        headers={"x-qr": token, "cache-control": "no-store"},
    )


@router.post("/reset", status_code=202, response_model=ActionAccepted)
async def instance_reset(
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(require_admin),
) -> ActionAccepted:
    """Log out, wipe stored credentials and exit; pairing is required afterwards."""
    logger.warning("instance reset requested")
    background_tasks.add_task(runtime.controller.reset)
    return ActionAccepted(action="resetting")


@router.post("/restart", status_code=202, response_model=ActionAccepted)
async def instance_restart(
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(require_admin),
) -> ActionAccepted:
    """Exit so the supervisor restarts the process; the session is kept."""
    logger.warning("instance restart requested")
    background_tasks.add_task(runtime.controller.restart)
    return ActionAccepted(action="restarting")
