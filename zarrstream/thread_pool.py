"""A fixed-size pool of worker threads fed from a shared job queue."""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from typing import Any, Callable, Deque

logger = logging.getLogger("zarrstream")

Job = Callable[[], Any]
ErrorHandler = Callable[[str], None]


class ThreadPool:
    """Run jobs on a fixed number of worker threads.

    A job is a callable taking no arguments. When it returns ``False`` the
    error handler is called with an empty message; when it raises, the error
    handler is called with the text of the exception. Any other outcome
    counts as success.
    """

    def __init__(self, n_threads: int, error_handler: ErrorHandler) -> None:
        max_threads = max(os.cpu_count() or 1, 1)
        n_threads = min(max(int(n_threads), 1), max_threads)

        self._error_handler = error_handler
        self._jobs: Deque[Job] = deque()
        self._cv = threading.Condition()
        self._accepting = True
        self._threads = [
            threading.Thread(target=self._process_tasks, daemon=True)
            for _ in range(n_threads)
        ]
        for thread in self._threads:
            thread.start()

    def push_job(self, job: Job) -> bool:
        """Queue ``job``; return False if the pool no longer accepts jobs."""
        with self._cv:
            if not self._accepting:
                return False
            self._jobs.append(job)
            self._cv.notify()
        return True

    def await_stop(self) -> None:
        """Stop accepting jobs, finish the queued ones and join the workers."""
        with self._cv:
            self._accepting = False
            self._cv.notify_all()

        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current and thread.is_alive():
                thread.join()

    def __enter__(self) -> "ThreadPool":
        return self

    def __exit__(self, *args: object) -> None:
        self.await_stop()

    def _should_stop(self) -> bool:
        return not self._accepting and not self._jobs

    def _process_tasks(self) -> None:
        while True:
            with self._cv:
                self._cv.wait_for(lambda: self._should_stop() or bool(self._jobs))
                if self._should_stop():
                    return
                job = self._jobs.popleft()
            self._run(job)

    def _run(self, job: Job) -> None:
        try:
            result = job()
        except Exception as exc:  # reported through the error handler
            self._report(str(exc))
            return
        if result is False:
            self._report("")

    def _report(self, message: str) -> None:
        try:
            self._error_handler(message)
        except Exception:
            logger.exception("Error handler failed")