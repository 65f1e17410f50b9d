from __future__ import annotations

import asyncio
import logging
import logging.handlers
from pathlib import Path

logger = logging.getLogger("economist")


def configure_logging(level_name: str = "INFO", log_dir: str = "logs") -> None:
    log_level = getattr(logging, level_name.strip().upper() or "INFO", logging.INFO)
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    stdout_handler = logging.StreamHandler()
    stdout_handler.setFormatter(formatter)
    file_handler = logging.handlers.RotatingFileHandler(
        directory / "economist.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(file_handler)
    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(max(log_level, logging.INFO))
    logger.info("logging_configured level=%s", logging.getLevelName(log_level))


def register_loop_exception_handler(loop: asyncio.AbstractEventLoop) -> None:
    if getattr(loop, "_economist_exception_handler_installed", False):
        return
    default_handler = loop.get_exception_handler()

    def _loop_exception_handler(active_loop: asyncio.AbstractEventLoop, context: dict) -> None:
        message = context.get("message", "Unhandled asyncio loop exception")
        exception = context.get("exception")
        if exception is not None:
            logger.error("loop_exception message=%s", message, exc_info=exception)
        else:
            logger.error("loop_exception message=%s context=%r", message, context)
        if default_handler is not None:
            default_handler(active_loop, context)

    loop.set_exception_handler(_loop_exception_handler)
    setattr(loop, "_economist_exception_handler_installed", True)
    logger.info("loop_exception_handler_registered")
