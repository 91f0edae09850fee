"""Logging configuration using Loguru.

Every record carries ``module`` and ``operation`` in its extra dict. The
operation comes from :func:`operation_context`, so log lines emitted deep
inside the store or a service can be traced back to the engine call that
caused them.
"""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

DEFAULT_CONTEXT = {"module": "loopflow", "operation": None}


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    log_dir: str = ".loop-flow/logs",
    file_rotation: str = "5 MB",
    file_retention: str = "14 days",
    compression: str = "zip",
    serialize: bool = True,
    context: dict[str, Any] | None = None,
) -> None:
    """
    Configure Loguru with an stderr sink and an optional rotating JSON file.

    Args:
        context: Extra fields bound to every record (e.g. the repository hash)
    """
    logger.remove()
    logger.configure(extra={**DEFAULT_CONTEXT, **(context or {})})

    # Console logging
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[module]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <magenta>{extra[operation]}</magenta> - <level>{message}</level>",
        colorize=True,
        serialize=False,
    )

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # One JSON document per line
        logger.add(
            log_path / "loopflow_{time:YYYY-MM-DD}.log",
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[module]}:{function}:{line} | {extra[operation]} - {message}",
            rotation=file_rotation,
            retention=file_retention,
            compression=compression,
            serialize=serialize,
            enqueue=True,
        )


def get_logger(name: str, **context: Any):
    """Get a logger instance for a module, with optional fixed context."""
    return logger.bind(module=name, **context)


@contextmanager
def operation_context(operation: str, **fields: Any) -> Iterator[None]:
    """Tag every record logged inside the block with the operation name."""
    with logger.contextualize(operation=operation, **fields):
        yield
