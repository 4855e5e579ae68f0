import logging
import os

_FORMAT = "[%(levelname)s] %(asctime)s %(name)s: %(message)s"
_loggers = {}


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"prov_engine.{name}")
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(h)
        logger.setLevel(_resolve_level(os.environ.get("LOG_LEVEL", "INFO")))
        logger.propagate = False
    _loggers[name] = logger
    return logger


def set_level(level) -> None:
    """Apply `level` to every logger handed out by get_logger."""
    lvl = _resolve_level(level)
    for logger in _loggers.values():
        logger.setLevel(lvl)
