# app/background.py
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable
import functools
import logging

logger = logging.getLogger("uvicorn.error")

Dispatch = Callable[..., Any]

# one worker keeps remote writes in submission order
_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vitalsense-bg")


def detached(fn: Callable[..., Any], description: str) -> Callable[..., None]:
    """Wrap fn so a failure is logged instead of reaching the caller."""
    @functools.wraps(fn)
    def runner(*args, **kwargs) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Background task failed ({description}): {e}", exc_info=True)
    return runner


def run_in_background(fn: Callable[..., Any], *args, **kwargs) -> None:
    """Default dispatcher; the API passes BackgroundTasks.add_task instead."""
    _executor.submit(fn, *args, **kwargs)
