"""Line-level hooks on the running script task."""

from __future__ import annotations

import os
from types import FrameType
from typing import Any, Callable, Dict, List, Optional, Set

from .logsink import LogSink
from .tasks import ScriptTask

LineHook = Callable[[str, int], None]
CallHook = Callable[[str, str, int], None]


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


class DebugStepper:
    """Report executed lines of selected source files for one task.

    Only files added with ``add_file_to_filter`` are instrumented; frames
    from other files are not traced at all.
    """

    def __init__(self, task: Optional[ScriptTask], *, log: Optional[LogSink] = None) -> None:
        self.task = task
        self.log = log or LogSink()
        self._enabled = False
        self._filter: Set[str] = set()
        self._filename_cache: Dict[str, bool] = {}
        self._line_hooks: List[LineHook] = []
        self._call_hooks: List[CallHook] = []
        self._return_hooks: List[CallHook] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    def add_file_to_filter(self, path: str) -> "DebugStepper":
        self._filter.add(_normalize(path))
        self._filename_cache.clear()
        return self

    def set_hook_on_new_line(self, callback: Optional[LineHook]) -> None:
        self._line_hooks = [callback] if callback is not None else []

    def set_hook_on_function_call(self, callback: Optional[CallHook]) -> None:
        self._call_hooks = [callback] if callback is not None else []

    def set_hook_on_function_return(self, callback: Optional[CallHook]) -> None:
        self._return_hooks = [callback] if callback is not None else []

    def enable(self) -> bool:
        if self.task is None or not self.task.alive:
            self.log.warn("cannot enable line hooks without a live script task", "debug")
            return False
        self._enabled = True
        self.task.set_trace(self._trace)
        self.log.debug("line hooks enabled", "debug")
        return True

    def disable(self) -> None:
        if not self._enabled:
            return
        self._enabled = False
        if self.task is not None and self.task.alive:
            self.task.set_trace(None)
        self.log.debug("line hooks disabled", "debug")

    def detach(self) -> None:
        self.disable()
        self.task = None

    def _wanted(self, filename: str) -> bool:
        cached = self._filename_cache.get(filename)
        if cached is None:
            cached = not self._filter or _normalize(filename) in self._filter
            self._filename_cache[filename] = cached
        return cached

    def _trace(self, frame: FrameType, event: str, arg: Any) -> Optional[Callable[..., Any]]:
        if not self._enabled:
            return None
        filename = frame.f_code.co_filename
        if not self._wanted(filename):
            return None
        if event == "line":
            for hook in self._line_hooks:
                hook(filename, frame.f_lineno)
        elif event == "call":
            for hook in self._call_hooks:
                hook(filename, frame.f_code.co_name, frame.f_lineno)
        elif event == "return":
            for hook in self._return_hooks:
                hook(filename, frame.f_code.co_name, frame.f_lineno)
        return self._trace
