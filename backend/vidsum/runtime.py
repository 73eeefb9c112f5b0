import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .errors import GenerationFailed, GenerationTimeout, JobCancelled
from .settings import settings


class DynamicSemaphore:
    def __init__(self, max_value: int) -> None:
        self._cond = threading.Condition()
        self._max = max(0, int(max_value))
        self._in_use = 0

    def set_max_value(self, max_value: int) -> None:
        new_max = max(0, int(max_value))
        with self._cond:
            self._max = new_max
            self._cond.notify_all()

    def acquire(self, timeout_seconds: Optional[float] = None) -> bool:
        deadline: Optional[float] = None
        if timeout_seconds is not None:
            deadline = time.monotonic() + float(timeout_seconds)

        with self._cond:
            while True:
                if self._max <= 0:
                    return False

                if self._in_use < self._max:
                    self._in_use += 1
                    return True

                if deadline is None:
                    self._cond.wait()
                    continue

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining)

    def release(self) -> None:
        with self._cond:
            if self._in_use > 0:
                self._in_use -= 1
                self._cond.notify()

    def snapshot(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "max": int(self._max),
                "in_use": int(self._in_use),
            }


_llm_limiter = DynamicSemaphore(settings.llm_concurrency)


def set_llm_concurrency(max_value: int) -> None:
    _llm_limiter.set_max_value(max_value)


@contextmanager
def limit_llm(timeout_seconds: Optional[float] = None) -> Iterator[None]:
    if not _llm_limiter.acquire(timeout_seconds=timeout_seconds):
        raise GenerationTimeout("LLM_CONCURRENCY_TIMEOUT")
    try:
        yield
    finally:
        _llm_limiter.release()


def get_concurrency_diagnostics() -> Dict[str, Any]:
    return {
        "limiters": {
            "llm": _llm_limiter.snapshot(),
        },
    }


class CancelToken:
    """Cooperative cancellation plus an optional overall deadline."""

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline: Optional[float] = None
        if timeout_seconds is not None and timeout_seconds > 0:
            self._deadline = time.monotonic() + float(timeout_seconds)
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def expired(self) -> bool:
        if self._deadline is None:
            return False
        return time.monotonic() >= self._deadline

    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise JobCancelled(f"job {self.reason}")
        if self.expired():
            raise GenerationFailed(
                GenerationFailed.REASON_TIMEOUT,
                "The summary job exceeded its time limit.",
            )

    def bound(self, timeout_seconds: Optional[float]) -> Optional[float]:
        remaining = self.remaining()
        if remaining is None:
            return timeout_seconds
        if timeout_seconds is None:
            return remaining
        return min(float(timeout_seconds), remaining)
