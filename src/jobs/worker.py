"""
Supervised background execution for conversion jobs.

Every submitted job gets a cancellation event that the job function
receives as its last argument and checks before its terminal write.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ConversionWorkerPool:
    """
    Thread pool that tracks one future and one cancel event per job id.

    Usage:
        pool = ConversionWorkerPool(max_workers=4)
        pool.submit(job_id, process, job_id, mappings)  # process(..., cancel_event)
        pool.cancel(job_id)
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="conversion")
        self._futures: Dict[str, Future] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: str, fn: Callable, *args) -> Future:
        """Run `fn(*args, cancel_event)` on the pool."""
        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[job_id] = cancel_event
            future = self._executor.submit(fn, *args, cancel_event)
            self._futures[job_id] = future
        future.add_done_callback(lambda f, jid=job_id: self._on_done(jid, f))
        logger.info("Submitted conversion job to worker pool", extra={"job_id": job_id})
        return future

    def _on_done(self, job_id: str, future: Future) -> None:
        with self._lock:
            self._cancel_events.pop(job_id, None)
            if self._futures.get(job_id) is future:
                del self._futures[job_id]
        if future.cancelled():
            logger.info("Conversion job %s was cancelled before it started", job_id, extra={"job_id": job_id})
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "Conversion worker crashed for job %s: %s", job_id, error,
                exc_info=(type(error), error, error.__traceback__),
                extra={"job_id": job_id},
            )

    def cancel(self, job_id: str) -> bool:
        """
        Signal a job to abandon its work.

        Returns True if the job was still queued or running.
        """
        with self._lock:
            event = self._cancel_events.get(job_id)
            future = self._futures.get(job_id)
        if event is not None:
            event.set()
        if future is None:
            return False
        if future.cancel():
            return True
        return not future.done()

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            future = self._futures.get(job_id)
        return future is not None and not future.done()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job finishes; True if it finished within the timeout."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        return future in done

    def shutdown(self, wait: bool = True) -> None:
        if not wait:
            with self._lock:
                for event in self._cancel_events.values():
                    event.set()
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def join(self) -> None:
        """Block until running workers exit. Only valid after shutdown()."""
        self._executor.shutdown(wait=True)
