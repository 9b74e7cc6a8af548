from __future__ import annotations

import threading
from typing import Sequence

from ..models import SonarQubeNotification
from .formatter import format_tooltip_text


class NotificationIndicatorModel:
    """
    内存版通知指示模型（线程安全）。

    - 事件按到达顺序累积，最多保留 max_events 条（丢弃最旧的）
    - 收到非空批次时置 has_unread_events，mark_as_read() 清除
    """

    def __init__(self, *, notifications_enabled: bool = True, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._max_events = max_events
        self._events: list[SonarQubeNotification] = []
        self._is_icon_visible = False
        self._has_unread_events = False
        self.notifications_enabled = notifications_enabled

    @property
    def is_icon_visible(self) -> bool:
        with self._lock:
            return self._is_icon_visible

    @is_icon_visible.setter
    def is_icon_visible(self, value: bool) -> None:
        with self._lock:
            self._is_icon_visible = bool(value)

    @property
    def has_unread_events(self) -> bool:
        with self._lock:
            return self._has_unread_events

    @property
    def notification_events(self) -> tuple[SonarQubeNotification, ...]:
        with self._lock:
            return tuple(self._events)

    @property
    def tooltip_text(self) -> str:
        with self._lock:
            return format_tooltip_text(self._has_unread_events, self.notifications_enabled)

    def set_notification_events(self, events: Sequence[SonarQubeNotification]) -> None:
        if not events:
            return
        with self._lock:
            self._events.extend(events)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
            self._has_unread_events = True

    def mark_as_read(self) -> None:
        with self._lock:
            self._has_unread_events = False

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._has_unread_events = False
