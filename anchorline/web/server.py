"""
Web server bootstrap for the anchorline history API.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env when the server is started directly
# (e.g. uvicorn anchorline.web.server:create_server_app --factory).
load_dotenv()

import uvicorn
from fastapi import FastAPI
from loguru import logger

from ..config import AnchorlineConfig, get_repo_root
from ..log import setup_logging
from ..sessions import SessionStore
from ..store import Store
from .api import create_app

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8421
CONFIG_ROOT_ENV_VAR = "ANCHORLINE_CONFIG_ROOT"


def _config_root() -> Path:
    forced_root = os.environ.get(CONFIG_ROOT_ENV_VAR)
    if forced_root:
        return Path(forced_root).expanduser().resolve()
    return get_repo_root()


def create_server_app() -> FastAPI:
    config = AnchorlineConfig.load(_config_root())
    setup_logging(config.logging.level, config.resolved_log_file)
    db_path = config.resolved_db_path
    logger.info("Starting anchorline history API on {}", db_path)

    store = Store(db_path)
    app = create_app(SessionStore(store))

    @app.on_event("shutdown")
    def _close_store() -> None:
        store.close()

    return app


def run_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, root: Path | None = None) -> None:
    if root is not None:
        os.environ[CONFIG_ROOT_ENV_VAR] = str(root.resolve())
    uvicorn.run("anchorline.web.server:create_server_app", host=host, port=port, log_level="info", factory=True)
