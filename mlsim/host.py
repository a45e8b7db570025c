"""Clocks and a headless host event loop."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from .logsink import LogSink


class TimingMode(Enum):
    BUSY = "busy"
    IDLE = "idle"
    TIMER = "timer"

    @classmethod
    def from_any(cls, value: Any) -> "TimingMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            order = [cls.BUSY, cls.IDLE, cls.TIMER]
            if 1 <= value <= len(order):
                return order[value - 1]
            raise ValueError(f"unknown timing mode {value!r}")
        text = str(value).strip().lower()
        if text.isdigit():
            return cls.from_any(int(text))
        return cls(text)


class MonotonicClock:
    """Milliseconds elapsed since the clock was created."""

    def __init__(self) -> None:
        self._origin = time.monotonic()

    def time(self) -> float:
        return (time.monotonic() - self._origin) * 1000.0

    def wait(self, ms: Optional[float], wakeup: threading.Event) -> None:
        wakeup.wait(None if ms is None else max(0.0, ms) / 1000.0)


class ManualClock:
    """Test clock; time only moves through ``advance`` (or ``step`` per read)."""

    def __init__(self, start: float = 0.0, *, step: float = 0.0) -> None:
        self.now = float(start)
        self.step = float(step)

    def time(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now

    def wait(self, ms: Optional[float], wakeup: threading.Event) -> None:
        self.advance(1.0 if ms is None else max(0.0, ms))


class IdleEvent:
    def __init__(self) -> None:
        self.more_requested = False

    def request_more(self) -> None:
        self.more_requested = True


@dataclass
class _Timer:
    interval: float
    handler: Callable[[], Any]
    next_due: float


class HeadlessHost:
    """Single-threaded host loop: idle handlers, periodic timers, posted calls.

    ``call_soon`` is the only method that may be used from other threads;
    everything else runs on the thread executing ``run``.
    """

    POLL_MS = 50.0

    def __init__(self, clock: Any = None, *, log: Optional[LogSink] = None) -> None:
        self.clock = clock or MonotonicClock()
        self.log = log or LogSink()
        self._idle_handlers: Dict[int, Callable[[IdleEvent], Any]] = {}
        self._timers: Dict[int, _Timer] = {}
        self._posted: Deque[Tuple[Callable[..., Any], Tuple[Any, ...]]] = deque()
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._next_token = 1
        self._quit = False
        self.repaints = 0
        self.last_show_previous: Optional[bool] = None
        self.on_repaint: Optional[Callable[[bool], Any]] = None

    def _token(self) -> int:
        token = self._next_token
        self._next_token += 1
        return token

    # ------------------------------------------------------------------
    # registration

    def bind_idle(self, handler: Callable[[IdleEvent], Any]) -> int:
        token = self._token()
        self._idle_handlers[token] = handler
        return token

    def unbind_idle(self, token: int) -> None:
        self._idle_handlers.pop(token, None)

    def start_timer(self, interval_ms: float, handler: Callable[[], Any]) -> int:
        if interval_ms <= 0:
            raise ValueError("timer interval must be positive")
        token = self._token()
        self._timers[token] = _Timer(interval=float(interval_ms), handler=handler, next_due=self.clock.time() + interval_ms)
        self.log.debug(f"timer {token} started ({interval_ms} ms)", "host")
        return token

    def stop_timer(self, token: int) -> None:
        if self._timers.pop(token, None) is not None:
            self.log.debug(f"timer {token} stopped", "host")

    def call_soon(self, func: Callable[..., Any], *args: Any) -> None:
        with self._lock:
            self._posted.append((func, args))
        self._wakeup.set()

    def request_repaint(self, show_previous: bool = False) -> None:
        self.repaints += 1
        self.last_show_previous = show_previous
        if self.on_repaint is not None:
            self.on_repaint(show_previous)

    # ------------------------------------------------------------------
    # loop

    def _run_posted(self) -> int:
        count = 0
        while True:
            with self._lock:
                if not self._posted:
                    return count
                func, args = self._posted.popleft()
            func(*args)
            count += 1

    def _run_timers(self) -> int:
        count = 0
        now = self.clock.time()
        for token, timer in list(self._timers.items()):
            if timer.next_due > now or token not in self._timers:
                continue
            timer.next_due += timer.interval
            if timer.next_due <= now:
                timer.next_due = now + timer.interval
            timer.handler()
            count += 1
        return count

    def _run_idle(self) -> bool:
        if not self._idle_handlers:
            return False
        event = IdleEvent()
        for handler in list(self._idle_handlers.values()):
            handler(event)
        return event.more_requested

    def yield_to_host(self) -> int:
        """Process posted calls and due timers once; returns the number handled."""
        return self._run_posted() + self._run_timers()

    def run_once(self) -> bool:
        """One loop pass; True when idle processing asked to be called again."""
        handled = self.yield_to_host()
        more = self._run_idle()
        return more or handled > 0

    def _next_timer_delay(self) -> Optional[float]:
        if not self._timers:
            return None
        now = self.clock.time()
        return max(0.0, min(timer.next_due for timer in self._timers.values()) - now)

    def run(
        self,
        until: Optional[Callable[[], bool]] = None,
        *,
        duration_ms: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ) -> int:
        """Run the loop until ``quit()``, ``until()`` is true, or a limit is hit."""
        self._quit = False
        deadline = None if duration_ms is None else self.clock.time() + duration_ms
        iterations = 0
        while not self._quit:
            if until is not None and until():
                break
            if max_iterations is not None and iterations >= max_iterations:
                break
            if deadline is not None and self.clock.time() >= deadline:
                break
            iterations += 1
            if self.run_once():
                continue
            with self._lock:
                pending = bool(self._posted)
            if pending or self._quit:
                continue
            delay = self._next_timer_delay()
            if delay is None:
                delay = self.POLL_MS
            if deadline is not None:
                delay = min(delay, max(0.0, deadline - self.clock.time()))
            self.clock.wait(delay, self._wakeup)
            self._wakeup.clear()
        return iterations

    def quit(self) -> None:
        self._quit = True
        self._wakeup.set()
