from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol


logger = logging.getLogger(__name__)


class Timer(Protocol):
    """
    定时任务抽象：单个回调 + start/stop/dispose 生命周期。
    """

    def set_callback(self, callback: Callable[[], None]) -> None: ...

    def clear_callback(self) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def dispose(self) -> None: ...


class RepeatingTimer:
    """
    基于后台线程的周期定时器。

    说明：
    - start() 之后每隔 interval_seconds 触发一次回调，首次触发在一个间隔之后
    - 回调异常只记录日志，不终止定时器
    - 允许在回调内部调用 stop()（不会 join 自身线程）
    - dispose() 之后不可再 start()
    """

    def __init__(self, interval_seconds: float, *, name: str = "sqn-timer") -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._interval_seconds = interval_seconds
        self._name = name
        self._callback: Callable[[], None] | None = None
        self._lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._disposed = False

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._thread is not None

    def set_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._callback is not None:
                raise RuntimeError("RepeatingTimer supports a single callback")
            self._callback = callback

    def clear_callback(self) -> None:
        with self._lock:
            self._callback = None

    def start(self) -> None:
        with self._lock:
            if self._disposed:
                raise RuntimeError("RepeatingTimer has been disposed")
            if self._thread is not None:
                return
            stop_event = threading.Event()
            thread = threading.Thread(target=self._run, args=(stop_event,), name=self._name, daemon=True)
            self._stop_event = stop_event
            self._thread = thread
        thread.start()

    def stop(self) -> None:
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
        if stop_event is None or thread is None:
            return
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self._interval_seconds + 5)

    def dispose(self) -> None:
        self.stop()
        with self._lock:
            self._callback = None
            self._disposed = True

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval_seconds):
            with self._lock:
                callback = self._callback
            if callback is None:
                continue
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("timer callback failed: timer=%s", self._name)
