from __future__ import annotations

import logging

from utilitysign.core.config import get_settings


_HANDLER_NAME = "utilitysign"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Install a single stream handler on the package logger; repeat calls only adjust the level.
    resolved = (level or get_settings().log_level).upper()
    logger = logging.getLogger("utilitysign")
    logger.setLevel(resolved)
    if any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
