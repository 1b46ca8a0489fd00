"""
Bounded waits on external collaborators.

The call runs on a worker thread and the caller waits at most ``timeout``
seconds.  A call that overruns keeps running in the background; its result
is discarded.  The ledger state it would have produced is reconciled later
(webhook or ``reconcile``).
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="ledger-io")


class CallTimedOut(Exception):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"call did not complete within {timeout}s")


def call_with_timeout(fn: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
    """
    Run ``fn(*args, **kwargs)`` and wait at most ``timeout`` seconds.

    Raises:
        CallTimedOut: the call did not finish in time.
        Exception: whatever ``fn`` raised.
    """
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise CallTimedOut(timeout) from None
