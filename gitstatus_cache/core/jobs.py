# -*- coding: utf-8 -*-
"""
GitStatusCache Jobs Module
Sprint 1: Background operations on worker threads
Sprint 2: Main-context dispatcher replacing the per-frame update hook
Sprint 5: Optional Qt pump (QTimer) for Qt host applications

Worker threads never call back into the consumer directly. Everything they
report (output lines, completion) is posted to a MainThreadDispatcher and
runs when the main loop pumps it, in posting order.
"""

from __future__ import annotations

import queue
import threading
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, TypeVar

from . import log

R = TypeVar("R")


def _get_qt_core():
    """
    Lazy import of QtCore so the package works without Qt

    Returns:
        QtCore module
    """
    try:
        from PySide6 import QtCore
    except ImportError:
        try:
            from PySide2 import QtCore
        except ImportError:
            raise ImportError(
                "Neither PySide6 nor PySide2 found. "
                "Install the 'qt' extra to use the Qt pump."
            )
    return QtCore


class MainThreadDispatcher:
    """
    FIFO channel from worker threads to the main execution context.

    post() may be called from any thread. pump() must be called by the
    main loop (periodically) and runs the queued callbacks, then the
    registered update callbacks.
    """

    def __init__(self):
        self._queue: "queue.SimpleQueue" = queue.SimpleQueue()
        self._update_callbacks: List[Callable[[], None]] = []
        self._main_thread = threading.current_thread()

    def bind_to_current_thread(self):
        """Make the calling thread the main context."""
        self._main_thread = threading.current_thread()

    def is_main_thread(self) -> bool:
        return threading.current_thread() is self._main_thread

    def post(self, callback: Callable[..., Any], *args):
        """Queue callback(*args) for the main context (thread-safe)."""
        self._queue.put((callback, args))

    def add_update_callback(self, callback: Callable[[], None]):
        if callback not in self._update_callbacks:
            self._update_callbacks.append(callback)

    def remove_update_callback(self, callback: Callable[[], None]):
        if callback in self._update_callbacks:
            self._update_callbacks.remove(callback)

    def pending_count(self) -> int:
        return self._queue.qsize()

    def pump(self, max_items: Optional[int] = None) -> int:
        """
        Run queued callbacks on the calling (main) thread.

        Args:
            max_items: Stop after this many callbacks (None = drain)

        Returns:
            int: number of queued callbacks that ran
        """
        count = 0
        while max_items is None or count < max_items:
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                break
            count += 1
            try:
                callback(*args)
            except Exception as e:
                log.error(f"Main context callback failed: {e}")

        for callback in list(self._update_callbacks):
            try:
                callback()
            except Exception as e:
                log.error(f"Update callback failed: {e}")

        return count


class OperationState(Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class AsyncOperation(Generic[R]):
    """
    Cancellable background unit of work producing a value of type R.

    Idle -> Running -> Completed | Aborted. The operation is also the
    monitor handed to the work function (see core.shell.ShellMonitor), so
    shell calls made by the work report their lines here and observe
    abort requests.

    Completion handlers and line handlers run on the main context. Line
    events of one operation always arrive before its completion.
    An exception raised by the work is stored in `error`, never re-raised.
    """

    def __init__(self, dispatcher: MainThreadDispatcher, name: str = "operation"):
        self._dispatcher = dispatcher
        self.name = name
        self._state = OperationState.IDLE
        self._lock = threading.Lock()
        self._finished_event = threading.Event()

        self.result: Optional[R] = None
        self.error: Optional[BaseException] = None

        self._abort_requested = False
        self._kill_requested = False
        self._abort_listeners: List[Callable[[bool], None]] = []

        self._completed_handlers: List[Callable[["AsyncOperation[R]"], None]] = []
        self._line_handlers: List[Callable[[str, str], None]] = []
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def start(
        cls,
        dispatcher: MainThreadDispatcher,
        work: Callable[["AsyncOperation[R]"], R],
        name: str = "operation",
    ) -> "AsyncOperation[R]":
        """Create an operation and run `work` on a background thread."""
        operation = cls(dispatcher, name)
        operation.run(work)
        return operation

    # ---- state ----

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def has_finished(self) -> bool:
        return self._state in (OperationState.COMPLETED, OperationState.ABORTED)

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    @property
    def kill_requested(self) -> bool:
        return self._kill_requested

    # ---- running ----

    def run(self, work: Callable[["AsyncOperation[R]"], R]):
        """Start `work` on a new thread. Returns immediately."""
        with self._lock:
            if self._state != OperationState.IDLE:
                raise RuntimeError(f"Operation '{self.name}' was already started")
            self._state = OperationState.RUNNING

        self._thread = threading.Thread(
            target=self._worker,
            args=(work,),
            name=f"gitstatus-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _worker(self, work):
        value = None
        error = None
        try:
            value = work(self)
        except Exception as e:
            error = e
            log.debug_safe(f"Operation '{self.name}' raised", e)

        self._dispatcher.post(self._finish, value, error)
        self._finished_event.set()

    def _finish(self, value, error):
        """Runs on the main context."""
        self.result = value
        self.error = error
        self._state = (
            OperationState.ABORTED if self._abort_requested else OperationState.COMPLETED
        )

        handlers = list(self._completed_handlers)
        self._completed_handlers.clear()
        for handler in handlers:
            try:
                handler(self)
            except Exception as e:
                log.error(f"Completion handler failed for {self.name}: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the work function has returned (worker side).

        The completion event still needs a dispatcher pump to fire.
        """
        return self._finished_event.wait(timeout)

    # ---- subscriptions (main context) ----

    def on_completed(self, handler: Callable[["AsyncOperation[R]"], None]):
        """Call handler(operation) on the main context when done."""
        if self.has_finished:
            self._dispatcher.post(handler, self)
        else:
            self._completed_handlers.append(handler)

    def on_line(self, handler: Callable[[str, str], None]):
        """Call handler(kind, text) for every reported line."""
        self._line_handlers.append(handler)

    def _emit_line(self, kind: str, text: str):
        for handler in list(self._line_handlers):
            try:
                handler(kind, text)
            except Exception as e:
                log.error(f"Line handler failed for {self.name}: {e}")

    # ---- abort ----

    def abort(self, kill: bool = False):
        """
        Request cancellation. Safe from any thread, repeated calls are no-ops.

        Args:
            kill: False asks the work to stop, True terminates child processes
        """
        with self._lock:
            if kill:
                if self._kill_requested:
                    return
                self._kill_requested = True
            elif self._abort_requested:
                return
            self._abort_requested = True
            listeners = list(self._abort_listeners)

        for listener in listeners:
            try:
                listener(kill)
            except Exception as e:
                log.debug_safe("Abort listener failed", e)

    def add_abort_listener(self, callback: Callable[[bool], None]):
        with self._lock:
            self._abort_listeners.append(callback)

    def remove_abort_listener(self, callback: Callable[[bool], None]):
        with self._lock:
            if callback in self._abort_listeners:
                self._abort_listeners.remove(callback)

    # ---- monitor contract ----

    def append_command(self, command: str, args: str):
        self._dispatcher.post(self._emit_line, "command", f"{command} {args}")

    def append_output_line(self, line: str):
        self._dispatcher.post(self._emit_line, "output", line)

    def append_trace_line(self, line: str):
        self._dispatcher.post(self._emit_line, "trace", line)

    def append_error_line(self, line: str):
        self._dispatcher.post(self._emit_line, "error", line)


class QtMainLoopPump:
    """
    Drives a MainThreadDispatcher from a QTimer on the Qt main thread.

    Imports Qt only when constructed.
    """

    def __init__(self, dispatcher: MainThreadDispatcher, interval_ms: int = 50):
        QtCore = _get_qt_core()

        self._dispatcher = dispatcher
        self._timer = QtCore.QTimer()
        self._timer.setInterval(int(interval_ms))
        self._timer.timeout.connect(self._on_timeout)

    def _on_timeout(self):
        self._dispatcher.pump()

    def start(self):
        self._dispatcher.bind_to_current_thread()
        self._timer.start()

    def stop(self):
        self._timer.stop()

    @property
    def is_active(self) -> bool:
        return bool(self._timer.isActive())
