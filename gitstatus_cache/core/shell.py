# -*- coding: utf-8 -*-
"""
GitStatusCache Shell Module
Sprint 1: Child process execution with timeouts and output capture
Sprint 4: Cooperative abort, forced kill and detached (timed out) children

Commands are never run through a shell. stdout and stderr are read on
helper threads so both pipes are drained while we wait for the process.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from . import log

# Appended to the error text when the timeout kicks in.
TIME_OUT_ERROR_TOKEN = "<TIME_OUT>"

# Used instead of the OS message when the executable can't be started.
EXECUTABLE_NOT_FOUND_TOKEN = "<EXECUTABLE_NOT_FOUND>"

_POLL_INTERVAL = 0.05
_READER_JOIN_TIMEOUT = 5.0


@runtime_checkable
class ShellMonitor(Protocol):
    """Sink for command lines, trace/error lines and abort requests."""

    @property
    def abort_requested(self) -> bool: ...

    def append_command(self, command: str, args: str) -> None: ...

    def append_output_line(self, line: str) -> None: ...

    def append_trace_line(self, line: str) -> None: ...

    def append_error_line(self, line: str) -> None: ...

    def add_abort_listener(self, callback: Callable[[bool], None]) -> None: ...

    def remove_abort_listener(self, callback: Callable[[bool], None]) -> None: ...


@dataclass
class ShellArgs:
    """
    Arguments for execute_command().

    timeout is in seconds: negative waits indefinitely, zero starts the
    process and returns right away without collecting any output.
    """

    command: str
    args: List[str] = field(default_factory=list)
    working_dir: Optional[str] = None
    timeout: float = -1
    wait_for_output: bool = True
    skip_timeout_error: bool = False
    monitor: Optional[ShellMonitor] = None


@dataclass
class ShellResult:
    """Outcome of a child process."""

    command: str
    output: str = ""
    error: str = ""
    exit_code: int = 0
    process_id: int = 0
    timed_out: bool = False
    aborted: bool = False

    @property
    def has_errors(self) -> bool:
        return bool(self.error.strip())


# Children left running after a timeout, by pid. Reaped by is_process_alive()
# or when the next child is tracked, so none linger as zombies.
_detached: Dict[int, subprocess.Popen] = {}
_detached_lock = threading.Lock()


def _get_subprocess_kwargs():
    """Platform-specific Popen kwargs (no console window, own process group)."""
    kwargs = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = (
            subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP
        )
    else:
        kwargs["start_new_session"] = True
    return kwargs


def format_command_line(command: str, args: List[str]) -> str:
    parts = [command]
    for arg in args:
        parts.append(f'"{arg}"' if (" " in arg or not arg) else arg)
    return " ".join(parts)


def _track_detached(proc: subprocess.Popen):
    with _detached_lock:
        # Reap children that already exited and were never polled.
        for pid in [pid for pid, p in _detached.items() if p.poll() is not None]:
            del _detached[pid]
        _detached[proc.pid] = proc


def _launch_failure(result: ShellResult, shell_args: ShellArgs, exc: OSError) -> ShellResult:
    if isinstance(exc, FileNotFoundError) and not (
        shell_args.working_dir and not os.path.isdir(shell_args.working_dir)
    ):
        result.error = f"{EXECUTABLE_NOT_FOUND_TOKEN} {shell_args.command}: {exc}"
    else:
        result.error = f"Failed to start {shell_args.command}: {exc}"
    result.exit_code = -1
    if shell_args.monitor is not None:
        shell_args.monitor.append_error_line(result.error)
    log.debug(result.error)
    return result


def _interrupt_process(proc: subprocess.Popen):
    """Ask the process (group) to stop, like Ctrl+C would."""
    try:
        if sys.platform == "win32":
            proc.send_signal(signal.CTRL_BREAK_EVENT)
        else:
            os.killpg(os.getpgid(proc.pid), signal.SIGINT)
    except (ProcessLookupError, PermissionError, OSError) as e:
        log.debug(f"Interrupt of process {proc.pid} failed: {e}")


def kill_process_tree(proc: subprocess.Popen):
    """Forcefully terminate a child together with everything it spawned."""
    try:
        if sys.platform == "win32":
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                capture_output=True,
                timeout=10,
                creationflags=subprocess.CREATE_NO_WINDOW,
            )
        else:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError, subprocess.TimeoutExpired) as e:
        log.debug(f"Killing process tree {proc.pid} failed: {e}")
        try:
            proc.kill()
        except OSError:
            pass


def is_process_alive(process_id: int) -> bool:
    """
    Check whether a process with this id is still running.

    Args:
        process_id: OS process id (as reported in ShellResult.process_id)

    Returns:
        bool: True if the process exists and has not exited
    """
    if not process_id or process_id <= 0:
        return False

    with _detached_lock:
        proc = _detached.get(process_id)

    if proc is not None:
        if proc.poll() is None:
            return True
        with _detached_lock:
            _detached.pop(process_id, None)
        return False

    if sys.platform == "win32":
        try:
            result = subprocess.run(
                ["tasklist", "/FI", f"PID eq {process_id}", "/NH"],
                capture_output=True,
                text=True,
                timeout=10,
                creationflags=subprocess.CREATE_NO_WINDOW,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return str(process_id) in result.stdout

    try:
        os.kill(process_id, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except OSError:
        return False
    return True


class _LineRelay:
    """
    Forwards reader lines to the monitor until detached.

    After detach() returns no more lines reach the monitor, the readers only
    keep draining the pipes.
    """

    def __init__(self, on_line: Optional[Callable[[str], None]]):
        self._on_line = on_line
        self._lock = threading.Lock()

    def __call__(self, line: str):
        with self._lock:
            if self._on_line is not None:
                self._on_line(line)

    def detach(self):
        with self._lock:
            self._on_line = None


def _pump_stream(stream, sink: List[str], on_line: Optional[Callable[[str], None]]):
    try:
        for line in stream:
            sink.append(line)
            if on_line is not None:
                on_line(line.rstrip("\r\n"))
    except (ValueError, OSError):
        # Stream closed under us (process killed).
        pass


def execute_command(shell_args: ShellArgs) -> ShellResult:
    """
    Run a command and capture its output.

    Blocks the calling thread until the process exits, the timeout elapses
    or a kill is requested through the monitor. Never call this from the
    main context.

    On timeout the process is left running. The result carries its
    process id, timed_out=True and TIME_OUT_ERROR_TOKEN in the error text,
    so the caller can track it later with is_process_alive().

    Args:
        shell_args: ShellArgs describing the command

    Returns:
        ShellResult
    """
    monitor = shell_args.monitor
    args = [str(a) for a in shell_args.args]
    command_line = format_command_line(shell_args.command, args)
    result = ShellResult(command=command_line)

    if monitor is not None:
        monitor.append_command(shell_args.command, " ".join(args))

    popen_cmd = [shell_args.command] + args
    kwargs = _get_subprocess_kwargs()

    # Fire and forget.
    if shell_args.timeout == 0 or not shell_args.wait_for_output:
        try:
            proc = subprocess.Popen(
                popen_cmd,
                cwd=shell_args.working_dir or None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **kwargs,
            )
        except OSError as e:
            return _launch_failure(result, shell_args, e)

        _track_detached(proc)
        result.process_id = proc.pid
        return result

    try:
        proc = subprocess.Popen(
            popen_cmd,
            cwd=shell_args.working_dir or None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            **kwargs,
        )
    except OSError as e:
        return _launch_failure(result, shell_args, e)

    result.process_id = proc.pid

    out_lines: List[str] = []
    err_lines: List[str] = []
    out_relay = _LineRelay(monitor.append_output_line if monitor else None)
    err_relay = _LineRelay(monitor.append_error_line if monitor else None)
    out_reader = threading.Thread(
        target=_pump_stream,
        args=(proc.stdout, out_lines, out_relay),
        daemon=True,
    )
    err_reader = threading.Thread(
        target=_pump_stream,
        args=(proc.stderr, err_lines, err_relay),
        daemon=True,
    )
    out_reader.start()
    err_reader.start()

    abort_requests: deque = deque()

    def _on_abort(kill: bool):
        abort_requests.append(kill)

    if monitor is not None:
        monitor.add_abort_listener(_on_abort)
        if monitor.abort_requested:
            abort_requests.append(False)

    deadline = None
    if shell_args.timeout > 0:
        deadline = time.monotonic() + shell_args.timeout

    interrupted = False
    killed = False

    try:
        while True:
            try:
                proc.wait(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass

            while abort_requests:
                kill = abort_requests.popleft()
                result.aborted = True
                if kill and not killed:
                    log.debug(f"Killing {command_line}")
                    kill_process_tree(proc)
                    killed = True
                elif not kill and not interrupted:
                    log.debug(f"Interrupting {command_line}")
                    _interrupt_process(proc)
                    interrupted = True

            if deadline is not None and time.monotonic() > deadline and not killed:
                result.timed_out = True
                break
    finally:
        if monitor is not None:
            monitor.remove_abort_listener(_on_abort)

    if result.timed_out:
        out_relay.detach()
        err_relay.detach()
        _track_detached(proc)
        timeout_line = (
            f"{TIME_OUT_ERROR_TOKEN} Command timed out after "
            f"{shell_args.timeout}s (pid {proc.pid}): {command_line}"
        )
        if monitor is not None:
            if shell_args.skip_timeout_error:
                monitor.append_trace_line(timeout_line)
            else:
                monitor.append_error_line(timeout_line)

        # Readers keep draining the pipes until the child exits.
        result.output = "".join(list(out_lines)).rstrip("\r\n")
        result.error = "".join(list(err_lines)) + timeout_line
        result.exit_code = -1
        log.debug(timeout_line)
        return result

    out_reader.join(_READER_JOIN_TIMEOUT)
    err_reader.join(_READER_JOIN_TIMEOUT)

    result.exit_code = proc.returncode
    result.output = "".join(out_lines).rstrip("\r\n")
    result.error = "".join(err_lines).rstrip("\r\n")

    if result.aborted and not result.error:
        result.error = f"Operation aborted: {command_line}"

    return result


def execute(
    command: str,
    args: List[str],
    working_dir: Optional[str] = None,
    timeout: float = -1,
    monitor: Optional[ShellMonitor] = None,
) -> ShellResult:
    """Shorthand for execute_command(ShellArgs(...))."""
    return execute_command(
        ShellArgs(
            command=command,
            args=list(args),
            working_dir=working_dir,
            timeout=timeout,
            monitor=monitor,
        )
    )


class ConsoleReporter:
    """
    Monitor that collects the output of a group of shell operations and
    logs it as one block when closed.

    Errors are logged as an error block. Otherwise the block is logged only
    when log_output is set and a command ran.
    Thread-safe for appends (deque), close() belongs to one owner.
    """

    def __init__(self, log_output: bool, silent: bool = False, initial_text: str = ""):
        self._lines: deque = deque()
        self._has_errors = False
        self._has_command = False
        self._log_output = log_output
        self._silent = silent
        self._abort_requested = False
        self._abort_listeners: List[Callable[[bool], None]] = []
        self._listeners_lock = threading.Lock()

        if initial_text:
            self._lines.append(initial_text)

    @property
    def has_errors(self) -> bool:
        return self._has_errors

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    def append_command(self, command: str, args: str):
        self._lines.append(f"{command} {args}")
        self._has_command = True

    def append_output_line(self, line: str):
        # Output is parsed by the callers, it would only be spam here.
        pass

    def append_trace_line(self, line: str):
        self._lines.append(line)

    def append_error_line(self, line: str):
        self._lines.append(line)
        self._has_errors = True

    def add_abort_listener(self, callback: Callable[[bool], None]):
        with self._listeners_lock:
            self._abort_listeners.append(callback)

    def remove_abort_listener(self, callback: Callable[[bool], None]):
        with self._listeners_lock:
            if callback in self._abort_listeners:
                self._abort_listeners.remove(callback)

    def abort(self, kill: bool):
        self._abort_requested = True
        with self._listeners_lock:
            listeners = list(self._abort_listeners)
        for callback in listeners:
            callback(kill)

    def reset_error_flag(self):
        self._has_errors = False

    def clear_logs_and_error_flag(self):
        self._lines.clear()
        self.reset_error_flag()

    def close(self):
        if not self._lines:
            return

        text = "\n".join(self._lines)
        self._lines.clear()

        if self._has_errors:
            if not self._silent:
                log.error(text)
        elif self._log_output and self._has_command:
            log.info(text)

        self._has_errors = False
        self._has_command = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
