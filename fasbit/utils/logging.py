import os
import sys

from loguru import logger

_VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
_DEFAULT_LEVEL = "INFO"
_CONFIGURED = False


def _normalize_level(level: str | None) -> str:
    if not level:
        return _DEFAULT_LEVEL
    normalized = level.strip().upper()
    return normalized if normalized in _VALID_LEVELS else _DEFAULT_LEVEL


def configure_logging(level: str | None = None, force: bool = False) -> str:
    """Route loguru output to stderr. Idempotent unless ``force`` is set."""
    global _CONFIGURED

    resolved_level = _normalize_level(level or os.getenv("LOG_LEVEL"))
    if _CONFIGURED and not force:
        return resolved_level

    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved_level,
        backtrace=False,
        diagnose=False,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level:<8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
    )

    _CONFIGURED = True
    logger.debug("Logging configured: level={}", resolved_level)
    return resolved_level
