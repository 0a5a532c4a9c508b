import sys

from loguru import logger

from fsbatch.batch import BatchExecutor, Command, Operation
from fsbatch.decoder import ReadType
from fsbatch.session import HandleState, ResultSink, Session

_configured_level: str | None = None


def configure_logging(level: str = "INFO") -> None:
    """Send fsbatch logs to stderr at ``level``, replacing loguru's default sink."""
    global _configured_level

    level = level.upper()
    if _configured_level == level:
        return

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    _configured_level = level
    logger.debug(f"fsbatch logging configured at {level}")


__all__ = [
    "BatchExecutor",
    "Command",
    "HandleState",
    "Operation",
    "ReadType",
    "ResultSink",
    "Session",
    "configure_logging",
]
