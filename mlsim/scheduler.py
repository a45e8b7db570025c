"""Cooperative script scheduler with separate update and render rates."""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional

from .api import ModuleRegistry
from .debugger import DebugStepper
from .errors import LoadError, MlsimError
from .events import EventBus
from .host import IdleEvent, MonotonicClock, TimingMode
from .logsink import LogSink
from .paths import PathResolver
from .sandbox import SandboxEnvironment, format_script_error, multiline_friendly
from .script import ScriptState, ScriptUnit, validate_transition
from .tasks import ScriptTask


class Scheduler:
    """Drive the current script at a bounded rate.

    Scripts run as cooperative tasks and give control back once per logic
    iteration, when they call ``Controls.read()``.  Each ``tick`` resumes
    the task at most once, gated by the target update rate; repaints are
    requested from the host independently, gated by the target render rate.
    """

    DEFAULT_UPDATE_RATE = 55
    DEFAULT_RENDER_RATE = 60
    TIMER_RESOLUTION_MS = 10

    def __init__(
        self,
        host: Any,
        *,
        resolver: Optional[PathResolver] = None,
        registry: Optional[ModuleRegistry] = None,
        bus: Optional[EventBus] = None,
        log: Optional[LogSink] = None,
        clock: Any = None,
        update_rate: float = DEFAULT_UPDATE_RATE,
        render_rate: float = DEFAULT_RENDER_RATE,
        timing: Any = TimingMode.TIMER,
        timer_resolution: float = TIMER_RESOLUTION_MS,
        change_directory: bool = True,
    ) -> None:
        self.host = host
        self.log = log or LogSink()
        self.clock = clock or getattr(host, "clock", None) or MonotonicClock()
        self.bus = bus or EventBus()
        self.resolver = resolver or PathResolver(log=self.log)
        self.registry = registry or ModuleRegistry.with_defaults(self.bus, self.clock, log=self.log)
        self.timing = TimingMode.from_any(timing)
        self.timer_resolution = timer_resolution
        self.change_directory = change_directory

        self.unit: Optional[ScriptUnit] = None
        self.script_path: Optional[str] = None
        self._script_search_dir: Optional[str] = None
        self.debugger: Optional[DebugStepper] = None
        self.line_hook: Optional[Callable[[str, int], None]] = None
        self.debug_mode = False
        self._busy_looping = False

        self.target_update_rate = 0.0
        self.target_render_rate = 0.0
        self._update_period = 0.0
        self._render_period = 0.0
        now = self.clock.time()
        self.last_update_timestamp = now
        self.last_render_timestamp = now

        self.total_updates = 0
        self.updates_this_second = 0
        self.current_ups = 0
        self._next_ups_second = now + 1000
        self.total_frames = 0
        self.frames_this_second = 0
        self.current_fps = 0
        self._next_fps_second = now + 1000

        self.set_target_update_rate(update_rate)
        self.set_target_render_rate(render_rate)

        self._observers: List[int] = [
            self.bus.attach("controlsRead", self._on_controls_read),
            self.bus.attach("stopDrawing", self._on_stop_drawing),
        ]
        self._idle_token: Optional[int] = None
        self._timer_token: Optional[int] = None
        if self.timing is TimingMode.IDLE:
            self._idle_token = host.bind_idle(self._on_idle)
        elif self.timing is TimingMode.TIMER:
            self._timer_token = host.start_timer(self.timer_resolution, self.tick)
        self.log.debug(f"scheduler using {self.timing.value} timing", "script")

    # ------------------------------------------------------------------
    # rates

    def set_target_update_rate(self, rate: float) -> None:
        rate = max(0, rate)
        self.target_update_rate = rate
        self._update_period = 1000.0 / rate if rate > 0 else 0.0
        self.last_update_timestamp = self.clock.time()
        self.log.debug(f"target UPS = {rate}", "script")

    def set_target_render_rate(self, rate: float) -> None:
        rate = max(0, rate)
        self.target_render_rate = rate
        self._render_period = 1000.0 / rate if rate > 0 else 0.0
        self.last_render_timestamp = self.clock.time()
        self.log.debug(f"target FPS = {rate}", "script")

    def get_target_update_rate(self) -> float:
        return self.target_update_rate

    def get_target_render_rate(self) -> float:
        return self.target_render_rate

    def get_total_updates(self) -> int:
        return self.total_updates

    def get_current_ups(self) -> int:
        return self.current_ups

    def get_current_fps(self) -> int:
        return self.current_fps

    def debug_mode_enabled(self) -> bool:
        return self.debug_mode

    def _reset_last_update_times(self) -> None:
        now = self.clock.time()
        self.last_update_timestamp = now
        self.last_render_timestamp = now

    # ------------------------------------------------------------------
    # state

    def get_state(self) -> ScriptState:
        return self.unit.state if self.unit is not None else ScriptState.NONE

    @staticmethod
    def get_state_name(state: Any) -> str:
        return ScriptState.from_any(state).name

    def _set_state(self, state: ScriptState, name: Optional[str] = None) -> None:
        validate_transition(self.get_state(), state)
        if name is None and self.unit is not None:
            name = self.unit.name
        if state is ScriptState.NONE:
            self.unit = None
        elif self.unit is None:
            raise MlsimError(f"cannot enter {state.name} without a loaded script")
        else:
            self.unit.state = state
        self.log.debug(f"script {name or '<none>'}: state {state.name}", "script")
        self.bus.notify("scriptStateChange", name, state)

    # ------------------------------------------------------------------
    # lifecycle

    def load_script(self, path: str) -> bool:
        """Load ``path`` as the current script, stopping any previous one."""
        if self.get_state() is not ScriptState.NONE:
            self.stop_script()
        self.log.info(f"loading {path}", "script")
        start_dir = os.getcwd()
        real, _ = self.resolver.resolve(path)
        try:
            unit = ScriptUnit.load(real, self.registry, start_dir=start_dir)
        except LoadError as exc:
            message = multiline_friendly(str(exc))
            name = os.path.basename(str(real))
            self.log.error(message, "script")
            self.log.error(f"script {path} NOT LOADED", "script")
            self.bus.notify("scriptError", name, message)
            self._set_state(ScriptState.NONE, name)
            return False

        self.script_path = path
        script_dir = unit.directory
        if self.change_directory and script_dir:
            os.chdir(script_dir)
        if self._script_search_dir is not None:
            self.resolver.remove_search_path(self._script_search_dir)
        self.resolver.add_search_path(script_dir)
        self._script_search_dir = script_dir

        self.unit = unit
        self._set_state(ScriptState.STOPPED)
        self.log.info(f"script {unit.name} loaded", "script")
        return True

    def start_script(self) -> None:
        unit = self.unit
        if unit is None or unit.state is not ScriptState.STOPPED:
            self.log.warn("can't start a script that's not stopped", "script")
            return
        self.debug_mode = False
        self.registry.reset_modules()
        sandbox = SandboxEnvironment(
            self.resolver,
            registry=self.registry,
            script_path=unit.source_path,
            clock=self.clock,
            log=self.log,
        )
        task = unit.start(sandbox)
        self.debugger = DebugStepper(task, log=self.log).add_file_to_filter(unit.source_path)
        self.debugger.set_hook_on_new_line(self._on_new_line)
        if self.line_hook is not None:
            self.debugger.enable()
        self._reset_last_update_times()
        self._set_state(ScriptState.RUNNING)
        self._run_busy_loop()

    def stop_script(self) -> None:
        unit = self.unit
        if unit is None:
            self.log.warn("can't stop: no script loaded", "script")
            return
        if self.debugger is not None:
            self.debugger.detach()
            self.debugger = None
        unit.discard()
        self._set_state(ScriptState.STOPPED)

    def _pause(self) -> bool:
        if self.get_state() is not ScriptState.RUNNING:
            self.log.warn("can't pause a script that is not running", "script")
            return False
        self._set_state(ScriptState.PAUSED)
        return True

    def _resume(self) -> bool:
        if self.get_state() is not ScriptState.PAUSED:
            self.log.warn("can't resume a script that is not paused", "script")
            return False
        self._reset_last_update_times()
        self._set_state(ScriptState.RUNNING)
        self._run_busy_loop()
        return True

    def pause_script(self) -> None:
        if self._pause():
            self.debug_mode = False

    def resume_script(self) -> None:
        if self.get_state() is ScriptState.PAUSED:
            self.debug_mode = False
        self._resume()

    def pause_or_resume_script(self) -> None:
        if self.get_state() is ScriptState.RUNNING:
            self.pause_script()
        else:
            self.resume_script()

    def restart_script(self) -> None:
        if self.get_state() is ScriptState.NONE:
            return
        self.stop_script()
        self.start_script()

    def load_and_start_script(self, path: str) -> bool:
        if not self.load_script(path):
            return False
        self.start_script()
        return True

    def reload_and_start_script(self) -> bool:
        if self.get_state() is ScriptState.NONE or self.unit is None or self.script_path is None:
            return False
        self.log.info("reloading script from disk", "script")
        start_dir = self.unit.start_dir
        source_path = self.unit.source_path
        self.stop_script()
        if self.change_directory:
            os.chdir(start_dir)
        self.registry.invalidate(source_path)
        return self.load_and_start_script(self.script_path)

    def debug_step_script(self) -> None:
        self.debug_mode = True
        if self.get_state() is ScriptState.RUNNING:
            self._pause()
        else:
            self._resume()

    def pause_script_while(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        paused_here = self.get_state() is ScriptState.RUNNING
        if paused_here:
            self.pause_script()
        try:
            return func(*args, **kwargs)
        finally:
            if paused_here and self.get_state() is ScriptState.PAUSED:
                self.resume_script()

    def set_line_hook(self, hook: Optional[Callable[[str, int], None]]) -> None:
        """Call ``hook(path, line)`` for every executed line of the script file."""
        self.line_hook = hook
        if self.debugger is None:
            return
        if hook is None:
            self.debugger.disable()
        else:
            self.debugger.enable()

    def shutdown(self) -> None:
        if self.unit is not None:
            self.stop_script()
        for token in self._observers:
            self.bus.detach(token)
        self._observers = []
        if self._idle_token is not None:
            self.host.unbind_idle(self._idle_token)
            self._idle_token = None
        if self._timer_token is not None:
            self.host.stop_timer(self._timer_token)
            self._timer_token = None

    # ------------------------------------------------------------------
    # main loop

    def tick(self) -> bool:
        """Resume the script once if the update rate allows; True if it ran."""
        now = self.clock.time()
        elapsed = now - self.last_update_timestamp
        period = self._update_period
        if period > 0 and elapsed < period:
            self._refresh_screen(show_previous=True)
            return False
        self.last_update_timestamp = now - (elapsed % period) if period > 0 else now
        resumed = self._resume_current()
        self._refresh_screen(show_previous=True)
        return resumed

    def _resume_current(self) -> bool:
        unit = self.unit
        if unit is None or unit.state is not ScriptState.RUNNING:
            return False
        task = unit.task
        if task is None or task.status != ScriptTask.SUSPENDED:
            return False
        ok, value = task.resume()
        if task.alive or self.unit is not unit or unit.task is not task:
            return True
        if ok:
            self._set_state(ScriptState.FINISHED)
        else:
            self._report_script_error(unit, value)
            self._set_state(ScriptState.ERROR)
        return True

    def _report_script_error(self, unit: ScriptUnit, exc: BaseException) -> None:
        message = multiline_friendly(format_script_error(exc))
        unit.last_error = message
        self.log.error(message, "script")
        self.bus.notify("scriptError", unit.name, message)

    def _on_idle(self, event: IdleEvent) -> None:
        self.tick()
        if self.get_state() is ScriptState.RUNNING:
            event.request_more()

    def _run_busy_loop(self) -> None:
        if self.timing is not TimingMode.BUSY or self._busy_looping:
            return
        self._busy_looping = True
        try:
            while self.get_state() is ScriptState.RUNNING:
                self.tick()
                self.host.yield_to_host()
        finally:
            self._busy_looping = False

    # ------------------------------------------------------------------
    # yield points

    def _on_controls_read(self, event: str) -> None:
        if ScriptTask.current() is None:
            return
        self.log.trace("end of logic iteration", "script")
        self._update_ups()
        if self.current_fps == 0:
            self._refresh_screen(show_previous=True)
        if self.debug_mode:
            self._pause()
        ScriptTask.suspend_current()

    def _on_stop_drawing(self, event: str) -> None:
        self._update_fps()
        self._refresh_screen(show_previous=False)

    def _on_new_line(self, path: str, line: int) -> None:
        self.bus.notify("debugLine", path, line)
        if self.line_hook is not None:
            self.line_hook(path, line)

    def _update_ups(self) -> None:
        self.total_updates += 1
        self.updates_this_second += 1
        now = self.clock.time()
        if now >= self._next_ups_second:
            self.current_ups = self.updates_this_second
            self.updates_this_second = 0
            self._next_ups_second = now + 1000
            self.bus.notify("upsUpdate", self.current_ups)

    def _update_fps(self) -> None:
        self.total_frames += 1
        self.frames_this_second += 1
        now = self.clock.time()
        if now >= self._next_fps_second:
            self.current_fps = self.frames_this_second
            self.frames_this_second = 0
            self._next_fps_second = now + 1000
            self.bus.notify("fpsUpdate", self.current_fps)

    def _refresh_screen(self, show_previous: bool) -> bool:
        now = self.clock.time()
        elapsed = now - self.last_render_timestamp
        period = self._render_period
        if period > 0 and elapsed < period:
            return False
        self.last_render_timestamp = now - (elapsed % period) if period > 0 else now
        self.host.request_repaint(show_previous)
        return True

    def status(self) -> Dict[str, Any]:
        unit = self.unit
        return {
            "script": unit.source_path if unit is not None else None,
            "state": self.get_state().name,
            "timing": self.timing.value,
            "target_ups": self.target_update_rate,
            "target_fps": self.target_render_rate,
            "current_ups": self.current_ups,
            "current_fps": self.current_fps,
            "total_updates": self.total_updates,
            "total_frames": self.total_frames,
            "debug_mode": self.debug_mode,
            "last_error": unit.last_error if unit is not None else None,
        }
