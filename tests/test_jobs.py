# -*- coding: utf-8 -*-
"""
Tests for core.jobs - main context dispatcher and async operations
"""

import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from gitstatus_cache.core import jobs
from gitstatus_cache.core.jobs import AsyncOperation, MainThreadDispatcher, OperationState
from gitstatus_cache.core.shell import execute


class TestMainThreadDispatcher:
    """Test the FIFO main context channel"""

    def test_pump_runs_in_order(self, dispatcher):
        """Test callbacks run FIFO on the pumping thread"""
        calls = []
        dispatcher.post(calls.append, 1)
        dispatcher.post(calls.append, 2)

        assert dispatcher.pending_count() == 2
        assert dispatcher.pump() == 2
        assert calls == [1, 2]

    def test_post_from_worker(self, dispatcher):
        """Test worker threads can post"""
        seen = []

        def _worker():
            dispatcher.post(lambda: seen.append(threading.current_thread()))

        thread = threading.Thread(target=_worker)
        thread.start()
        thread.join()
        dispatcher.pump()

        assert seen == [threading.current_thread()]

    def test_pump_limit(self, dispatcher):
        """Test max_items"""
        calls = []
        for i in range(5):
            dispatcher.post(calls.append, i)

        assert dispatcher.pump(max_items=2) == 2
        assert calls == [0, 1]

    def test_failing_callback_logged(self, dispatcher, mock_console):
        """Test exceptions don't stop the pump"""
        calls = []
        dispatcher.post(lambda: 1 / 0)
        dispatcher.post(calls.append, "after")
        dispatcher.pump()

        assert calls == ["after"]
        mock_console.PrintError.assert_called_once()

    def test_update_callbacks_run_after_queue(self, dispatcher):
        """Test update callbacks run on every pump"""
        order = []
        dispatcher.add_update_callback(lambda: order.append("update"))
        dispatcher.post(order.append, "queued")
        dispatcher.pump()
        dispatcher.pump()

        assert order == ["queued", "update", "update"]

    def test_remove_update_callback(self, dispatcher):
        callback = MagicMock()
        dispatcher.add_update_callback(callback)
        dispatcher.add_update_callback(callback)
        dispatcher.remove_update_callback(callback)
        dispatcher.pump()

        callback.assert_not_called()

    def test_is_main_thread(self, dispatcher):
        results = []
        thread = threading.Thread(target=lambda: results.append(dispatcher.is_main_thread()))
        thread.start()
        thread.join()

        assert dispatcher.is_main_thread()
        assert results == [False]


class TestAsyncOperation:
    """Test background operations"""

    def test_completes_with_result(self, dispatcher, pump_until):
        """Test result and completion on the main context"""
        completed = []
        op = AsyncOperation.start(dispatcher, lambda op: 42, name="answer")
        op.on_completed(lambda o: completed.append((o.result, threading.current_thread())))

        assert pump_until(dispatcher, lambda: completed)
        assert completed == [(42, threading.current_thread())]
        assert op.state == OperationState.COMPLETED
        assert op.has_finished
        assert op.error is None

    def test_exception_captured(self, dispatcher, pump_until):
        """Test exceptions of the work end up in error"""

        def _work(op):
            raise ValueError("bad output")

        op = AsyncOperation.start(dispatcher, _work)
        assert pump_until(dispatcher, lambda: op.has_finished)

        assert isinstance(op.error, ValueError)
        assert op.result is None

    def test_lines_arrive_before_completion(self, dispatcher, pump_until):
        """Test line events are delivered before the completion event"""
        events = []

        def _work(op):
            op.append_command("git", "status")
            for i in range(20):
                op.append_output_line(f"line {i}")
            op.append_error_line("err")
            return "done"

        op = AsyncOperation(dispatcher, "lines")
        op.on_line(lambda kind, text: events.append((kind, text)))
        op.on_completed(lambda o: events.append(("completed", o.result)))
        op.run(_work)

        assert pump_until(dispatcher, lambda: op.has_finished)
        assert events[0] == ("command", "git status")
        assert events[-1] == ("completed", "done")
        assert [e for e in events if e[0] == "output"][-1] == ("output", "line 19")

    def test_timed_out_command_lines_before_completion(self, dispatcher, pump_until):
        """Test a timed out child can't deliver lines after completion"""
        events = []
        code = "import time; print('early', flush=True); time.sleep(1); print('late', flush=True)"

        def _work(op):
            return execute(sys.executable, ["-c", code], timeout=0.5, monitor=op)

        op = AsyncOperation(dispatcher, "timeout")
        op.on_line(lambda kind, text: events.append((kind, text)))
        op.on_completed(lambda o: events.append(("completed", "")))
        op.run(_work)

        assert pump_until(dispatcher, lambda: op.has_finished)
        assert op.result.timed_out
        # Let the child print its last line.
        time.sleep(1.5)
        dispatcher.pump()

        assert events[-1] == ("completed", "")
        assert ("output", "early") in events
        assert ("output", "late") not in events

    def test_run_twice_raises(self, dispatcher):
        op = AsyncOperation.start(dispatcher, lambda op: None)
        with pytest.raises(RuntimeError):
            op.run(lambda op: None)

    def test_abort_state(self, dispatcher, pump_until):
        """Test an aborted operation ends in the Aborted state"""
        started = threading.Event()

        def _work(op):
            started.set()
            while not op.abort_requested:
                pass
            return "partial"

        op = AsyncOperation.start(dispatcher, _work)
        started.wait(5)
        op.abort()

        assert pump_until(dispatcher, lambda: op.has_finished)
        assert op.state == OperationState.ABORTED
        assert op.abort_requested
        assert not op.kill_requested

    def test_abort_idempotent(self, dispatcher):
        """Test listeners hear each abort level once"""
        op = AsyncOperation(dispatcher)
        calls = []
        op.add_abort_listener(calls.append)

        op.abort()
        op.abort()
        op.abort(kill=True)
        op.abort(kill=True)

        assert calls == [False, True]
        assert op.kill_requested

    def test_on_completed_after_finish(self, dispatcher, pump_until):
        """Test late subscribers still get the event"""
        op = AsyncOperation.start(dispatcher, lambda op: 1)
        assert pump_until(dispatcher, lambda: op.has_finished)

        late = []
        op.on_completed(late.append)
        dispatcher.pump()

        assert late == [op]

    def test_wait(self, dispatcher):
        op = AsyncOperation.start(dispatcher, lambda op: 1)
        assert op.wait(5)
        assert op.state == OperationState.RUNNING
        dispatcher.pump()
        assert op.state == OperationState.COMPLETED


class TestQtMainLoopPump:
    """Test the QTimer driven pump with mocked Qt"""

    def test_qt_core_prefers_pyside6(self, mock_qt):
        """QtCore is taken from PySide6 when it is importable"""
        assert jobs._get_qt_core() is mock_qt

    def test_timer_pumps_dispatcher(self, dispatcher):
        qtcore = MagicMock()
        with patch.object(jobs, "_get_qt_core", return_value=qtcore):
            pump = jobs.QtMainLoopPump(dispatcher, interval_ms=10)

        timer = qtcore.QTimer.return_value
        timer.setInterval.assert_called_once_with(10)

        pump.start()
        timer.start.assert_called_once()

        calls = []
        dispatcher.post(calls.append, "x")
        pump._on_timeout()
        assert calls == ["x"]

        pump.stop()
        timer.stop.assert_called_once()

    def test_real_qt_timer(self, dispatcher):
        QtCore = pytest.importorskip("PySide6.QtCore")
        app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])

        pump = jobs.QtMainLoopPump(dispatcher, interval_ms=5)
        pump.start()
        try:
            assert pump.is_active
            calls = []
            dispatcher.post(calls.append, "qt")
            QtCore.QTimer.singleShot(200, app.quit)
            app.exec()
            assert calls == ["qt"]
        finally:
            pump.stop()
