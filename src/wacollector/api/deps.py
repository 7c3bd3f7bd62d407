"""FastAPI dependencies shared by the control routes."""

import hmac

from fastapi import Header, HTTPException, Request

from wacollector.runtime import Runtime

ADMIN_SECRET_HEADER = "x-admin-secret"


def get_runtime(request: Request) -> Runtime:
    """Runtime attached to the app by create_app."""
    return request.app.state.runtime


def is_admin_authorized(expected: str | None, provided: str | None) -> bool:
    """Constant-time secret check. Without a configured secret, everyone is admin."""
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_admin(
    request: Request,
    x_admin_secret: str | None = Header(None, alias=ADMIN_SECRET_HEADER),
) -> Runtime:
    """Dependency for administrative actions; 401 on secret mismatch."""
    runtime = get_runtime(request)
    if not is_admin_authorized(runtime.settings.admin_secret, x_admin_secret):
        raise HTTPException(status_code=401, detail="unauthorized")
    return runtime
