"""Synchronous notification channel between the core and its observers."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

# Handlers receive the event name followed by the notification arguments.
EventHandler = Callable[..., None]

ALL_EVENTS = "*"


@dataclass
class Notification:
    seq: int
    ts: float
    name: str
    args: Tuple[Any, ...] = field(default_factory=tuple)


@dataclass
class Observer:
    event: str
    handler: EventHandler

    def matches(self, name: str) -> bool:
        return self.event == ALL_EVENTS or self.event == name


class EventBus:
    """Fan-out named notifications to attached handlers, in attach order."""

    def __init__(self, history_size: int = 512) -> None:
        self._observers: Dict[int, Observer] = {}
        self._lock = threading.Lock()
        self._next_token = 1
        self._next_seq = 1
        self._history: Deque[Notification] = deque(maxlen=max(1, history_size))

    def attach(self, event: str, handler: EventHandler) -> int:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._observers[token] = Observer(event=event, handler=handler)
            return token

    def detach(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def notify(self, event: str, *args: Any) -> Notification:
        with self._lock:
            notification = Notification(seq=self._next_seq, ts=time.time(), name=event, args=tuple(args))
            self._next_seq += 1
            self._history.append(notification)
            observers = [obs for _, obs in sorted(self._observers.items()) if obs.matches(event)]
        for observer in observers:
            observer.handler(event, *args)
        return notification

    def history(self, limit: Optional[int] = None, *, event: Optional[str] = None) -> List[Notification]:
        with self._lock:
            items = [item for item in self._history if event is None or item.name == event]
        if limit is None or limit <= 0 or limit >= len(items):
            return items
        return items[-limit:]

    def count(self, event: str) -> int:
        return len(self.history(event=event))

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
