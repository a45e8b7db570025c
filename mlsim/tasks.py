"""Stackful cooperative tasks with explicit suspend/resume.

A task runs its function on a dedicated worker thread, but control is handed
back and forth strictly: ``resume()`` blocks the caller until the task
suspends or finishes, and ``suspend_current()`` blocks the task until the
next ``resume()``.  Only one side ever runs, so code using tasks remains
logically single-threaded.
"""

from __future__ import annotations

import sys
import threading
from typing import Any, Callable, Optional, Tuple

from .errors import TaskError

TraceFunction = Callable[..., Any]


class ScriptTask:
    SUSPENDED = "suspended"
    RUNNING = "running"
    NORMAL = "normal"
    DEAD = "dead"

    _local = threading.local()

    def __init__(self, func: Callable[..., Any], *args: Any, name: Optional[str] = None, **kwargs: Any) -> None:
        self._func = func
        self._args = args
        self._kwargs = kwargs
        self.name = name or getattr(func, "__name__", "task")
        self.status = self.SUSPENDED
        self._started = False
        self._thread: Optional[threading.Thread] = None
        self._to_task = threading.Semaphore(0)
        self._to_caller = threading.Semaphore(0)
        self._abandon = False
        self._parked = threading.Event()
        self._outcome: Tuple[bool, Any] = (True, None)
        self._trace: Optional[TraceFunction] = None
        self._trace_dirty = False

    def __repr__(self) -> str:
        return f"<ScriptTask {self.name} {self.status}>"

    @classmethod
    def current(cls) -> Optional["ScriptTask"]:
        return getattr(cls._local, "task", None)

    @classmethod
    def suspend_current(cls, value: Any = None) -> None:
        task = cls.current()
        if task is None:
            raise TaskError("attempt to suspend outside of a task")
        task._suspend(value)

    @property
    def trace_function(self) -> Optional[TraceFunction]:
        return self._trace

    @property
    def alive(self) -> bool:
        return self.status != self.DEAD

    def resume(self) -> Tuple[bool, Any]:
        """Run the task until it suspends or finishes.

        Returns ``(True, value)`` after a suspension or a normal return and
        ``(False, exception)`` when the task function raised.
        """
        if self.status == self.DEAD:
            raise TaskError(f"cannot resume dead task '{self.name}'")
        if self.status != self.SUSPENDED:
            raise TaskError(f"cannot resume non-suspended task '{self.name}' ({self.status})")
        caller = ScriptTask.current()
        if caller is not None:
            caller.status = self.NORMAL
        self.status = self.RUNNING
        if not self._started:
            self._started = True
            self._thread = threading.Thread(target=self._bootstrap, name=f"mlsim-task-{self.name}", daemon=True)
            self._thread.start()
        else:
            self._to_task.release()
        self._to_caller.acquire()
        if caller is not None:
            caller.status = self.RUNNING
        return self._outcome

    def close(self) -> None:
        """Abandon the task.

        The task is never resumed again and none of its code runs after
        this: no ``finally`` or ``except`` blocks are executed.  A suspended
        task is marked dead right away and its worker stays parked.  A task
        closing itself (or one of its resumers) is parked at its next
        suspension, which then returns ``(True, None)`` to its resumer.
        """
        if self.status == self.DEAD:
            return
        self._abandon = True
        if self.status == self.SUSPENDED:
            self.status = self.DEAD

    def set_trace(self, trace: Optional[TraceFunction]) -> None:
        """Install a ``sys.settrace`` style function on the task's own thread."""
        self._trace = trace
        self._trace_dirty = True
        if ScriptTask.current() is self:
            self._apply_trace()

    def _apply_trace(self) -> None:
        self._trace_dirty = False
        trace = self._trace
        sys.settrace(trace)
        frame = sys._getframe(1)
        while frame is not None:
            frame.f_trace = trace
            frame = frame.f_back

    def _park(self) -> None:
        # The worker never wakes up again; the daemon thread ends with the process.
        sys.settrace(None)
        self._outcome = (True, None)
        self.status = self.DEAD
        self._to_caller.release()
        self._parked.wait()

    def _suspend(self, value: Any) -> None:
        if self._abandon:
            self._park()
        self._outcome = (True, value)
        self.status = self.SUSPENDED
        self._to_caller.release()
        self._to_task.acquire()
        if self._trace_dirty:
            self._apply_trace()

    def _bootstrap(self) -> None:
        ScriptTask._local.task = self
        if self._trace is not None:
            self._apply_trace()
        try:
            result = self._func(*self._args, **self._kwargs)
        except BaseException as exc:  # scripts may raise anything, SystemExit included
            self._outcome = (False, exc)
        else:
            self._outcome = (True, result)
        finally:
            sys.settrace(None)
            ScriptTask._local.task = None
            self.status = self.DEAD
            self._to_caller.release()
