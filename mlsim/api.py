"""Host API modules exposed to scripts, and the registry that owns them."""

from __future__ import annotations

import os
from types import CodeType
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Tuple

from .events import EventBus
from .logsink import LogSink


class Controls:
    """Input module. ``read()`` is the once-per-iteration logic yield point."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.reads = 0

    def read(self) -> None:
        self.reads += 1
        self._bus.notify("controlsRead")

    def reset_module(self) -> None:
        self.reads = 0


class Screen:
    """Headless screen: tracks draw passes and the FPS reported by the scheduler."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.drawing = False
        self.frames = 0
        self._fps = 0
        bus.attach("fpsUpdate", self._on_fps_update)

    def _on_fps_update(self, event: str, fps: int) -> None:
        self._fps = fps

    def startDrawing(self) -> None:
        self.drawing = True

    def stopDrawing(self) -> None:
        self.drawing = False
        self.frames += 1
        self._bus.notify("stopDrawing")

    def render(self) -> None:
        self.stopDrawing()
        self.startDrawing()

    def getFps(self) -> int:
        return self._fps

    def reset_module(self) -> None:
        self.drawing = False
        self.frames = 0
        self._fps = 0


class Stopwatch:
    def __init__(self, clock: Any) -> None:
        self._clock = clock
        self._started_at: Optional[float] = None
        self._accumulated = 0.0

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock.time()

    def stop(self) -> None:
        if self._started_at is not None:
            self._accumulated += self._clock.time() - self._started_at
            self._started_at = None

    def reset(self) -> None:
        self._accumulated = 0.0
        if self._started_at is not None:
            self._started_at = self._clock.time()

    def time(self) -> int:
        total = self._accumulated
        if self._started_at is not None:
            total += self._clock.time() - self._started_at
        return int(total)


class TimerModule:
    def __init__(self, clock: Any) -> None:
        self._clock = clock

    def new(self) -> Stopwatch:
        return Stopwatch(self._clock)


class ModuleRegistry:
    """Named host modules plus the process-wide compiled-code cache."""

    SCREEN_HELPERS = ("startDrawing", "stopDrawing", "render")

    def __init__(self, log: Optional[LogSink] = None) -> None:
        self.log = log or LogSink()
        self._modules: Dict[str, Any] = {}
        self._code_cache: Dict[str, Tuple[float, CodeType]] = {}
        self._hits = 0
        self._misses = 0

    @classmethod
    def with_defaults(cls, bus: EventBus, clock: Any, log: Optional[LogSink] = None) -> "ModuleRegistry":
        registry = cls(log=log)
        registry.register("Controls", Controls(bus))
        registry.register("screen", Screen(bus))
        registry.register("Timer", TimerModule(clock))
        return registry

    def register(self, name: str, module: Any) -> None:
        self._modules[name] = module
        self.log.debug(f"registered module {name}", "module")

    def get(self, name: str) -> Any:
        return self._modules.get(name)

    def names(self) -> List[str]:
        return list(self._modules)

    def reset_modules(self) -> None:
        for name, module in self._modules.items():
            reset = getattr(module, "reset_module", None)
            if callable(reset):
                self.log.trace(f"resetting module {name}", "module")
                reset()

    def bind(self, namespace: MutableMapping[str, Any]) -> None:
        namespace.update(self._modules)
        screen = self._modules.get("screen")
        if screen is not None:
            for helper in self.SCREEN_HELPERS:
                func: Optional[Callable[[], None]] = getattr(screen, helper, None)
                if func is not None:
                    namespace[helper] = func

    # ------------------------------------------------------------------
    # compiled code

    def compile_file(self, path: str) -> CodeType:
        """Compile ``path`` once per modification time; errors propagate."""
        key = os.path.abspath(path)
        mtime = os.path.getmtime(key)
        cached = self._code_cache.get(key)
        if cached is not None and cached[0] == mtime:
            self._hits += 1
            return cached[1]
        self._misses += 1
        with open(key, "rb") as handle:
            source = handle.read()
        code = compile(source, key, "exec", dont_inherit=True)
        self._code_cache[key] = (mtime, code)
        self.log.trace(f"compiled {key}", "module")
        return code

    def invalidate(self, path: Optional[str] = None) -> None:
        if path is None:
            self._code_cache.clear()
        else:
            self._code_cache.pop(os.path.abspath(path), None)

    def cache_info(self) -> Dict[str, int]:
        return {"entries": len(self._code_cache), "hits": self._hits, "misses": self._misses}
