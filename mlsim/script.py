"""Loaded scripts and their lifecycle states."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from types import CodeType
from typing import Any, Dict, Optional

from .api import ModuleRegistry
from .errors import LoadError
from .sandbox import SandboxEnvironment
from .tasks import ScriptTask


class ScriptState(Enum):
    NONE = "none"
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"

    @classmethod
    def from_any(cls, value: Any) -> "ScriptState":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                return cls[value.upper()]
        raise ValueError(f"unknown script state {value!r}")


_ALLOWED_STATE_TRANSITIONS: Dict[ScriptState, set] = {
    ScriptState.NONE: {ScriptState.NONE, ScriptState.STOPPED},
    ScriptState.STOPPED: {ScriptState.NONE, ScriptState.STOPPED, ScriptState.RUNNING},
    ScriptState.RUNNING: {ScriptState.STOPPED, ScriptState.PAUSED, ScriptState.FINISHED, ScriptState.ERROR},
    ScriptState.PAUSED: {ScriptState.STOPPED, ScriptState.RUNNING},
    ScriptState.FINISHED: {ScriptState.STOPPED},
    ScriptState.ERROR: {ScriptState.STOPPED},
}


def validate_transition(old: ScriptState, new: ScriptState) -> None:
    if new not in _ALLOWED_STATE_TRANSITIONS.get(old, set()):
        raise ValueError(f"invalid_state_transition:{old.value}->{new.value}")


@dataclass
class ScriptUnit:
    """One loaded script: compiled code, and while started, its sandbox and task."""

    source_path: str
    code: CodeType
    start_dir: str
    state: ScriptState = ScriptState.NONE
    sandbox: Optional[SandboxEnvironment] = None
    task: Optional[ScriptTask] = None
    last_error: Optional[str] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.source_path)

    @property
    def directory(self) -> str:
        return os.path.dirname(self.source_path)

    @property
    def namespace(self) -> Optional[Dict[str, Any]]:
        return self.sandbox.namespace if self.sandbox is not None else None

    @classmethod
    def load(cls, path: str, registry: ModuleRegistry, *, start_dir: Optional[str] = None) -> "ScriptUnit":
        source_path = os.path.abspath(path)
        try:
            code = registry.compile_file(source_path)
        except SyntaxError as exc:
            raise LoadError(f"{source_path}:{exc.lineno}: {exc.msg}", path=source_path) from exc
        except (OSError, ValueError) as exc:
            raise LoadError(f"{source_path}: {exc}", path=source_path) from exc
        return cls(source_path=source_path, code=code, start_dir=start_dir or os.getcwd())

    def start(self, sandbox: SandboxEnvironment) -> ScriptTask:
        self.discard()
        self.sandbox = sandbox
        self.last_error = None
        self.task = ScriptTask(self._run, sandbox, name=self.name)
        return self.task

    def _run(self, sandbox: SandboxEnvironment) -> None:
        exec(self.code, sandbox.namespace)

    def discard(self) -> None:
        """Drop the task and namespace; the task is abandoned, never resumed."""
        task = self.task
        self.task = None
        self.sandbox = None
        if task is not None:
            task.close()
