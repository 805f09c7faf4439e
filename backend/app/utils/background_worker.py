"""Simple thread-based background worker with retries and dead-lettering."""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from collections import deque
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="bg-worker")
_tasks: Dict[str, Future] = {}
# Dead-letter queue storing failed jobs for later inspection
# Each entry: (function name, args, kwargs, exception)
dead_letter_queue: deque[Tuple[str, tuple, dict, Exception]] = deque(maxlen=1000)


def _run_with_retry(
    func: Callable[..., Any], *args: Any, retries: int = 3, backoff: float = 1, **kwargs: Any
) -> Any:
    """Execute ``func`` with retry and linear backoff."""

    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, retries + 1):
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            logger.error(
                "Background task %s failed on attempt %s/%s: %s", name, attempt, retries, exc
            )
            if attempt == retries:
                dead_letter_queue.append((name, args, kwargs, exc))
                raise
            time.sleep(backoff * attempt)


def _forget(task_id: str) -> Callable[[Future], None]:
    def _done(_: Future) -> None:
        _tasks.pop(task_id, None)

    return _done


def enqueue(
    func: Callable[..., Any], *args: Any, retries: int = 3, backoff: float = 1, **kwargs: Any
) -> str:
    """Submit ``func`` to the worker and return a task id."""

    task_id = str(uuid.uuid4())
    future = _executor.submit(_run_with_retry, func, *args, retries=retries, backoff=backoff, **kwargs)
    _tasks[task_id] = future
    future.add_done_callback(_forget(task_id))
    return task_id


def pending() -> int:
    return len(_tasks)


def shutdown(wait: bool = False) -> None:
    """Stop accepting work; optionally wait for in-flight jobs."""
    _executor.shutdown(wait=wait, cancel_futures=not wait)
