"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
from typing import Any, Callable, TypeVar, cast

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

def log_backend_call(func: F) -> F:
    """Decorator to log how long a storage backend method took.

    The decorated method's owner must expose a ``kind`` attribute
    (``"local"`` or ``"s3"``), which prefixes every log line.

    Args:
        func: The backend method to decorate

    Returns:
        Decorated method that logs its execution time and failures
    """
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        start_time = time.monotonic()
        try:
            result = func(self, *args, **kwargs)
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"[{self.kind}] {func.__name__} failed after {duration:.2f}s: {str(e)}")
            raise
        duration = time.monotonic() - start_time
        logger.info(f"[{self.kind}] {func.__name__} completed in {duration:.2f}s")
        return result
    return cast(F, wrapper)
