"""
Bounded-call wrapper around any ScheduleStore.

Every store operation runs under one deadline with uniform failure
semantics:
- reads (get_/list_/find_) are idempotent; transient failures and
  timeouts are retried with exponential backoff, then surface as
  StoreUnavailableError / StoreTimeoutError, never as an empty result
- writes are never retried; a timeout surfaces as WriteOutcomeUnknownError
  and the caller must re-read current state before trying again
"""
import contextvars
import functools
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from booking_engine.lib.errors import StoreTimeoutError, StoreUnavailableError, WriteOutcomeUnknownError
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.lib.metrics import get_metrics_collector
from booking_engine.lib.settings import settings
from booking_engine.store.base import ScheduleStore, is_read_operation


logger = get_logger(__name__)


class BoundedScheduleStore:
    """
    Proxy exposing the wrapped store's operations under a timeout.

    A call that times out keeps running on its worker thread until the
    store returns; its result is discarded. SQL calls use their own
    session, so an abandoned call never touches another request's state.
    """

    def __init__(
        self,
        inner: ScheduleStore,
        timeout_seconds: Optional[float] = None,
        read_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
        max_workers: int = 16,
    ):
        self._inner = inner
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.store_timeout_seconds
        self._read_attempts = read_attempts if read_attempts is not None else settings.store_read_attempts
        self._retry_wait = (
            retry_wait_seconds if retry_wait_seconds is not None else settings.store_retry_wait_seconds
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="store-call")
        self._metrics = get_metrics_collector()

    @property
    def inner(self) -> ScheduleStore:
        return self._inner

    def __getattr__(self, name):
        target = getattr(self._inner, name)
        if name.startswith("_") or not callable(target):
            return target

        if is_read_operation(name):
            @functools.wraps(target)
            def bounded_read(*args, **kwargs):
                return self._read(name, target, *args, **kwargs)
            return bounded_read

        @functools.wraps(target)
        def bounded_write(*args, **kwargs):
            return self._call(name, target, False, *args, **kwargs)
        return bounded_write

    def _read(self, name, fn, *args, **kwargs):
        retrying = Retrying(
            stop=stop_after_attempt(self._read_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type(StoreUnavailableError),
            before_sleep=lambda state: log_with_context(
                logger, "warning", "Retrying store read",
                operation=name, attempt=state.attempt_number,
            ),
            reraise=True,
        )
        return retrying(self._call, name, fn, True, *args, **kwargs)

    def _call(self, name, fn, is_read, *args, **kwargs):
        # Carry the request's correlation id onto the worker thread
        context = contextvars.copy_context()
        future = self._executor.submit(context.run, fn, *args, **kwargs)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError:
            future.cancel()
            self._metrics.increment_store_failures(name, "timeout")
            log_with_context(
                logger, "warning", "Schedule store call timed out",
                operation=name, timeout_seconds=self._timeout, read=is_read,
            )
            if is_read:
                raise StoreTimeoutError(name, self._timeout)
            raise WriteOutcomeUnknownError(name, reason="timeout")
        except StoreUnavailableError:
            self._metrics.increment_store_failures(name, "unavailable")
            raise
        except WriteOutcomeUnknownError:
            self._metrics.increment_store_failures(name, "unknown_outcome")
            raise

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
