"""Cooperative execution engine for sandboxed handheld scripts."""

from .api import Controls, ModuleRegistry, Screen, TimerModule
from .debugger import DebugStepper
from .errors import ConfigError, LoadError, MlsimError, TaskError
from .events import EventBus, Notification
from .host import HeadlessHost, IdleEvent, ManualClock, MonotonicClock, TimingMode
from .logsink import LogSink
from .paths import PathResolver
from .sandbox import SandboxEnvironment, multiline_friendly, protected_call
from .scheduler import Scheduler
from .script import ScriptState, ScriptUnit
from .tasks import ScriptTask

__all__ = [
    "ConfigError",
    "Controls",
    "DebugStepper",
    "EventBus",
    "HeadlessHost",
    "IdleEvent",
    "LoadError",
    "LogSink",
    "ManualClock",
    "MlsimError",
    "ModuleRegistry",
    "MonotonicClock",
    "Notification",
    "PathResolver",
    "SandboxEnvironment",
    "Scheduler",
    "Screen",
    "ScriptState",
    "ScriptTask",
    "ScriptUnit",
    "TaskError",
    "TimerModule",
    "TimingMode",
    "multiline_friendly",
    "protected_call",
]

__version__ = "0.1.0"
