"""Logging configuration for topocraft.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing helpers for provider calls

Environment Variables:
    TOPOCRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    TOPOCRAFT_LOG_FILE: Path to log file (default: ~/.topocraft/topocraft.log)
    TOPOCRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    TOPOCRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from topocraft.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("create_resource")
    async def create_resource(self, resource):
        ...

    # Or use context manager for sections:
    async with timed_section("apply", resource="web-listener"):
        ...
"""
import functools
import inspect
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("topocraft.perf")

_configured = False


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("TOPOCRAFT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".topocraft" / "topocraft.log"
    path_str = os.environ.get("TOPOCRAFT_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(level: Optional[str] = None, log_to_file: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (``level`` if given, else TOPOCRAFT_LOG_LEVEL, else INFO)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics (file only)

    Calling it again is a no-op.
    """
    global _configured
    if _configured:
        return

    if level:
        log_level = getattr(logging, level.upper(), logging.INFO)
    else:
        log_level = get_log_level()
    max_size_mb = int(os.environ.get("TOPOCRAFT_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("TOPOCRAFT_LOG_BACKUPS", "5"))

    # Main format: timestamp - logger - level - message
    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Performance format: focused on timing
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console handler - respects configured level
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    root_logger = logging.getLogger("topocraft")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.addHandler(console_handler)

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False

    if log_to_file:
        log_file = get_log_file()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # File handler - captures DEBUG and above (everything)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(main_format)
        root_logger.addHandler(file_handler)

        # Performance file handler - separate file for easy analysis
        perf_log_file = log_file.parent / "topocraft-perf.log"
        perf_handler = RotatingFileHandler(
            perf_log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8"
        )
        perf_handler.setLevel(logging.DEBUG)
        perf_handler.setFormatter(perf_format)
        perf_logger.addHandler(perf_handler)

        root_logger.debug(
            f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
        )

    _configured = True


def _subject(args: tuple) -> str:
    """Best-effort name of the resource a provider call is about."""
    for arg in args[1:]:
        name = getattr(arg, "name", None)
        if isinstance(name, str):
            return name
    return "N/A"


def timed(operation: str):
    """Decorator to log execution time of async provider methods.

    Args:
        operation: Name of the operation (e.g., "create_resource")

    The resource name is taken from the first argument that has a
    ``name`` attribute (a Resource or RemoteHandle).

    Usage:
        @timed("create_resource")
        async def create_resource(self, resource):
            ...
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@timed only supports coroutine functions, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            subject = _subject(args)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000  # ms
                perf_logger.info(
                    f"{operation:20s} | {subject:24s} | {elapsed:8.2f}ms | OK"
                )
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(
                    f"{operation:20s} | {subject:24s} | {elapsed:8.2f}ms | FAIL: {e}"
                )
                raise

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, resource: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Args:
        operation: Name of the operation
        resource: Resource name
        **extra: Additional context to log

    Usage:
        async with timed_section("apply", resource="demo-vpc", action="create"):
            await provider.create_resource(...)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {resource or 'N/A':24s} | {elapsed:8.2f}ms | OK"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.info(msg)
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {resource or 'N/A':24s} | {elapsed:8.2f}ms | FAIL: {e}"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
