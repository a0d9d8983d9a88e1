"""
Structured Logging Configuration
loguru sinks for console and rotated JSON files, with correlation and tenant context.
"""
import asyncio
import functools
import sys
import time
import uuid
from contextvars import ContextVar

from loguru import logger

from .config import settings

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
tenant_id: ContextVar[str] = ContextVar("tenant_id", default="-")


def get_correlation_id() -> str:
    """Return the current correlation ID, generating one on first use."""
    cid = correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:12]
        correlation_id.set(cid)
    return cid


def _inject_context(record) -> bool:
    extra = record["extra"]
    extra.setdefault("correlation_id", correlation_id.get() or "-")
    extra["tenant_id"] = tenant_id.get()
    return True


def setup_logging(level: str = None, log_file: str = None):
    """Configure loguru with a console sink and a rotating file sink."""
    logger.remove()
    level = level or settings.log_level
    log_file = log_file if log_file is not None else settings.log_file

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[module]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "{extra[correlation_id]} | tenant={extra[tenant_id]} | "
        "<level>{message}</level>"
    )
    logger.configure(extra={"module": "medretrieval"})

    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
        filter=_inject_context,
    )

    if log_file:
        try:
            logger.add(
                log_file,
                format=log_format,
                level=level,
                rotation="10 MB",
                retention="7 days",
                compression="gz",
                serialize=True,
                filter=_inject_context,
            )
        except OSError:
            # Unwritable log directory: console logging only
            pass

    return logger


def get_logger(name: str = "medretrieval"):
    """Get a logger bound to a component name."""
    return logger.bind(module=name)


def timed(func=None, *, name: str = None):
    """Log how long a sync or async callable takes; failures are logged and re-raised."""
    def decorator(fn):
        label = name or f"{fn.__module__}.{fn.__qualname__}"
        log = get_logger("timing")

        if asyncio.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    result = await fn(*args, **kwargs)
                except Exception as e:
                    log.error(f"{label} failed after {time.perf_counter() - start:.3f}s: {e}")
                    raise
                log.info(f"{label} completed in {time.perf_counter() - start:.3f}s")
                return result

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                log.error(f"{label} failed after {time.perf_counter() - start:.3f}s: {e}")
                raise
            log.info(f"{label} completed in {time.perf_counter() - start:.3f}s")
            return result

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


# Initialize logging on import
setup_logging()
