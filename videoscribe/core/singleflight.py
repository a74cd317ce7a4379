"""
Single-flight request coalescing.

Concurrent callers asking for the same key share one in-flight computation:
the first caller runs it, later callers block until it finishes and receive
the same result (or the same exception).
"""

import logging
import threading
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Call:
    __slots__ = ("done", "result", "error", "waiters")

    def __init__(self):
        self.done = threading.Event()
        self.result = None
        self.error: BaseException | None = None
        self.waiters = 0


class SingleFlight:

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], T]) -> tuple[T, bool]:
        """
        Run fn once per key at a time.
        Returns (result, shared) where shared is True for coalesced callers.
        """
        with self._lock:
            call = self._calls.get(key)
            if call is not None:
                call.waiters += 1
                leader = False
            else:
                call = _Call()
                self._calls[key] = call
                leader = True

        if not leader:
            logger.info("Coalescing request for %s onto in-flight job", key)
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result, True

        try:
            call.result = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()

        return call.result, False
