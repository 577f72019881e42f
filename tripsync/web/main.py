from __future__ import annotations

from fastapi import FastAPI

from tripsync.core.config import load_config
from tripsync.web.api import router as api_router


def build_app() -> FastAPI:
    load_config()
    api = FastAPI(title="tripsync", version="0.1.0")
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()

    from tripsync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
