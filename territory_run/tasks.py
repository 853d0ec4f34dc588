"""Background execution helpers for best-effort work and periodic ticks."""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from .config import TASK_ERROR_HISTORY, TASK_MAX_WORKERS

ErrorCallback = Callable[[BaseException], None]


@dataclass(frozen=True, slots=True)
class TaskFailure:
    name: str
    error: str
    at: datetime


class TaskSupervisor:
    """Fire-and-forget runner that logs and records failures instead of raising.

    ``max_workers=0`` runs every task inline on the caller's thread, which
    keeps replay runs and tests deterministic.
    """

    def __init__(
        self,
        max_workers: int = TASK_MAX_WORKERS,
        *,
        history: int = TASK_ERROR_HISTORY,
        name: str = "territory-task",
    ) -> None:
        if max_workers < 0:
            raise ValueError("max_workers must be >= 0")
        self._executor: Optional[ThreadPoolExecutor] = None
        if max_workers > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix=name
            )
        self._pending: Dict[Future[Any], str] = {}
        self._failures: Deque[TaskFailure] = deque(maxlen=max(1, history))
        self._lock = threading.Lock()
        self._closed = False
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def inline(self) -> bool:
        return self._executor is None

    def failures(self) -> List[TaskFailure]:
        with self._lock:
            return list(self._failures)

    def _run(
        self,
        name: str,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        on_error: Optional[ErrorCallback],
    ) -> Any:
        try:
            return fn(*args)
        except Exception as exc:
            with self._lock:
                self._failures.append(
                    TaskFailure(name=name, error=str(exc), at=datetime.now(timezone.utc))
                )
            self._log.warning("Background task %s failed: %s", name, exc)
            if on_error is not None:
                try:
                    on_error(exc)
                except Exception:  # pragma: no cover
                    self._log.exception("Error callback for task %s failed", name)
            return None

    def submit(
        self,
        name: str,
        fn: Callable[..., Any],
        *args: Any,
        on_error: Optional[ErrorCallback] = None,
    ) -> Optional[Future[Any]]:
        """Schedule ``fn(*args)``; returns None when run inline or after shutdown."""

        with self._lock:
            closed = self._closed
        if closed:
            self._log.debug("Dropping task %s submitted after shutdown", name)
            return None
        if self._executor is None:
            self._run(name, fn, args, on_error)
            return None
        future = self._executor.submit(self._run, name, fn, args, on_error)
        with self._lock:
            self._pending[future] = name
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.pop(future, None)

    def cancel_pending(self, name: Optional[str] = None) -> int:
        """Cancel tasks that have not started yet; running ones finish normally.

        With ``name`` only tasks submitted under that name are cancelled.
        """

        with self._lock:
            pending = [
                future
                for future, task_name in self._pending.items()
                if name is None or task_name == name
            ]
        cancelled = sum(1 for future in pending if future.cancel())
        if cancelled:
            self._log.debug(
                "Cancelled %d pending background tasks (%s)", cancelled, name or "all"
            )
        return cancelled

    def wait(self, timeout: float | None = None) -> bool:
        """Block until all submitted tasks finished; returns False on timeout."""

        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        with self._lock:
            self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_tasks, cancel_futures=not wait_for_tasks)


class RepeatingTimer:
    """Call ``fn`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, fn: Callable[[], Any], *, name: str = "timer"):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self._fn = fn
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        stop = self._stop
        while not stop.wait(self.interval):
            try:
                self._fn()
            except Exception as exc:
                self._log.warning("Timer %s tick failed: %s", self._name, exc)

    def cancel(self) -> None:
        """Stop ticking; joins the thread unless called from the tick itself."""

        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.interval))


__all__ = ["RepeatingTimer", "TaskFailure", "TaskSupervisor"]
