"""
Scoped parallel fetches for views that need several independent reads.
"""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional


def fetch_parallel(
    *calls: Callable[[], Any], max_workers: Optional[int] = None
) -> list[Any]:
    """
    Run independent calls concurrently and return their results in order.

    The pool lives only for this call. On the first failure, calls that have
    not started yet are cancelled and the error propagates; calls already in
    flight are left to finish in the background since threads cannot be
    interrupted.
    """
    if not calls:
        return []
    executor = ThreadPoolExecutor(
        max_workers=max_workers or len(calls), thread_name_prefix="crm-fetch"
    )
    try:
        futures = [executor.submit(call) for call in calls]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in futures:
            if future in done and future.exception() is not None:
                for other in pending:
                    other.cancel()
                raise future.exception()
        return [future.result() for future in futures]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
