"""Stage time budgets.

Recovery and fallback strategies run inline and are charged the CPU time of
the calling thread, so time spent queued behind other files or waiting for
the GIL never counts against them. The primary parser is external code that
may block, so it gets a dedicated thread and a wall-clock limit that starts
when that thread starts.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Tuple


def run_inline(fn: Callable[..., Any], *args: Any) -> Tuple[Any, float]:
    """Call ``fn(*args)`` and return ``(value, cpu_seconds)``. Exceptions propagate."""
    started = time.thread_time()
    value = fn(*args)
    return value, time.thread_time() - started


class BudgetExceeded(Exception):
    """The call did not finish within its wall-clock limit."""


def run_in_thread(fn: Callable[..., Any], timeout: float, *args: Any, name: str = "budget") -> Any:
    """Run ``fn(*args)`` on its own daemon thread and wait up to *timeout* seconds.

    Raises:
        BudgetExceeded: the call is still running. The thread is left to
            finish on its own and its result is discarded.
        Exception: whatever ``fn`` raised.
    """
    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = fn(*args)
        except Exception as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=target, name=name, daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise BudgetExceeded(f"{name} still running after {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
