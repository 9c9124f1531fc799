"""Logging configuration for netscript.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time progress
- Performance timing helpers for compile and session phases

Environment Variables:
    NETSCRIPT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    NETSCRIPT_LOG_FILE: Path to log file (default: ~/.netscript/netscript.log)
    NETSCRIPT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    NETSCRIPT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from netscript.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("compile")
    def compile(self, machine, action):
        ...

    # Or use context manager for sections:
    async with timed_section("session", machine="r1"):
        ...
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import contextmanager, asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("netscript.perf")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("NETSCRIPT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".netscript" / "netscript.log"
    path_str = os.environ.get("NETSCRIPT_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(level: Optional[int] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects NETSCRIPT_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance log file for timing metrics
    """
    log_level = level if level is not None else get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("NETSCRIPT_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("NETSCRIPT_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "netscript-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    root_logger = logging.getLogger("netscript")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Perf records go to their own file only
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    root_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def _format(operation: str, machine: Optional[str], elapsed: float, status: str, extra: dict) -> str:
    msg = f"{operation:20s} | {machine or 'N/A':15s} | {elapsed:8.2f}ms | {status}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return msg


def timed(operation: str):
    """Decorator to log execution time of sync/async functions.

    The machine label is taken from a ``machine`` keyword argument, or from
    the first positional argument after ``self`` when it is a string.
    """
    def decorator(func: Callable) -> Callable:
        def _machine(args, kwargs) -> Optional[str]:
            machine = kwargs.get("machine")
            if machine is None and len(args) > 1 and isinstance(args[1], str):
                machine = args[1]
            return getattr(machine, "label", machine)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            machine = _machine(args, kwargs)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_format(operation, machine, elapsed, f"FAIL: {e}", {}))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_format(operation, machine, elapsed, "OK", {}))
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            machine = _machine(args, kwargs)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_format(operation, machine, elapsed, f"FAIL: {e}", {}))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_format(operation, machine, elapsed, "OK", {}))
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, machine: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("session", machine="r1", action="audit"):
            await ...
    """
    start = time.perf_counter()
    try:
        yield
    except BaseException as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_format(operation, machine, elapsed, f"FAIL: {e!r}", extra))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_format(operation, machine, elapsed, "OK", extra))


@contextmanager
def timed_section_sync(operation: str, machine: Optional[str] = None, **extra):
    """Sync context manager for timing code sections."""
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_format(operation, machine, elapsed, f"FAIL: {e}", extra))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_format(operation, machine, elapsed, "OK", extra))
