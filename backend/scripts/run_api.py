"""
Run the StreamCutter FastAPI server.
"""
import logging
import os

import uvicorn


def main() -> None:
    host = os.getenv("UVICORN_HOST", "0.0.0.0")
    port = int(os.getenv("UVICORN_PORT", "8000"))
    reload_enabled = os.getenv("UVICORN_RELOAD", "false").lower() == "true"
    workers = int(os.getenv("UVICORN_WORKERS", "1"))
    log_level = os.getenv("STREAMCUTTER_LOG_LEVEL", "INFO").upper()

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if reload_enabled and workers > 1:
        # Uvicorn does not support reload and multi-worker mode simultaneously.
        workers = 1

    uvicorn.run(
        "streamcutter.api:app",
        host=host,
        port=port,
        reload=reload_enabled,
        workers=workers,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
