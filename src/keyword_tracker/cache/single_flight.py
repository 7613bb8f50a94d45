from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlight(Generic[K, V]):
    """Coalesce concurrent calls for the same key into one execution.

    The first caller runs ``fn``; callers arriving while it runs block on its
    outcome and get the same value or the same exception.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[K, Future] = {}

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)

    def do(self, key: K, fn: Callable[[], V], timeout: float | None = None) -> V:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            logger.debug("Joining in-flight computation for %s", key)
            return future.result(timeout=timeout)

        try:
            value = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._calls.pop(key, None)
