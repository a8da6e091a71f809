# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILENAME = "flower_shop.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# loggers that do not always propagate to root under uvicorn
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def _has_shop_handler(lg: logging.Logger) -> bool:
    return any(str(getattr(h, "baseFilename", "")).endswith(LOG_FILENAME) for h in lg.handlers)


def setup_logging(settings) -> Path:
    """
    Rotating file log at SHOP_DATA_ROOT/logs/flower_shop.log (5 MB x 3).

    Order events, stock rejections and transaction failures all land here.
    In development a console handler is added as well. Safe to call twice.
    """
    log_dir = Path(settings.SHOP_DATA_ROOT).expanduser() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME
    level = logging.getLevelName(str(settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    file_handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    if not _has_shop_handler(root):
        root.addHandler(file_handler)
        if settings.is_development:
            console = logging.StreamHandler()
            console.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(console)

    for name in SERVER_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not _has_shop_handler(lg):
            lg.addHandler(file_handler)

    # engine SQL statements only with DB_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DB_ECHO else logging.WARNING)
    return log_path
