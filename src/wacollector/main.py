"""Process entry point: load settings, wire the runtime, serve the control API."""

import sys

import uvicorn

from wacollector.api.factory import create_app
from wacollector.config import ConfigError, load_settings
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.runtime import build_runtime

logger = get_logger("wacollector")


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error(
            "invalid configuration",
            extra={"extra_fields": safe_log_context(reason=str(e))},
        )
        return 1

    runtime = build_runtime(settings)
    app = create_app(runtime)

    logger.info(
        "starting http server",
        extra={"extra_fields": safe_log_context(port=settings.port)},
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
