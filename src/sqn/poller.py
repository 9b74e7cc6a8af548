from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from .errors import OperationCancelledError
from .models import NotificationData, utc_now
from .notify.base import NotificationSink
from .session import NotificationEvents, NotificationsNotSupported, NotificationsResult, SonarQubeSession
from .timer import Timer
from .transport import CancellationToken


logger = logging.getLogger(__name__)

MAX_WATERMARK_AGE = timedelta(days=1)


class NotificationSource(Protocol):
    def get_notification_events(
        self,
        project_key: str,
        events_since: datetime,
        token: CancellationToken,
    ) -> NotificationsResult: ...


class ProjectBinding(Protocol):
    """
    当前工作区与服务端项目的绑定关系。
    """

    @property
    def is_connected(self) -> bool: ...

    @property
    def bound_project_key(self) -> str | None: ...


@dataclass(slots=True)
class SessionProjectBinding:
    """
    最简单的绑定：固定的 project_key + 会话连接状态。
    """

    session: SonarQubeSession
    project_key: str | None

    @property
    def is_connected(self) -> bool:
        return self.session.is_connected

    @property
    def bound_project_key(self) -> str | None:
        return self.project_key


class PollerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def initial_watermark(notification_data: NotificationData | None, now: datetime) -> datetime:
    """
    计算起始水位：max(持久化值, now - 24h)；没有持久化值时取 now - 24h。
    """
    one_day_ago = now - MAX_WATERMARK_AGE
    if notification_data is None or notification_data.last_notification_date < one_day_ago:
        return one_day_ago
    return notification_data.last_notification_date


class NotificationPoller:
    """
    通知轮询器：按固定间隔向会话查询“水位之后”的新通知。

    执行语义：
    - start()：计算起始水位，同步执行一次拉取，然后再启动定时器
    - 每次 tick 执行一次拉取；上一次尚未结束时直接跳过本次 tick
    - 会话返回 NotificationsNotSupported 时调用 stop()，不再轮询（熔断）
    - 水位只会前移到批次中的最大事件时间，不会回退
    """

    def __init__(
        self,
        source: NotificationSource,
        binding: ProjectBinding,
        model: NotificationSink,
        timer: Timer,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._binding = binding
        self._model = model
        self._timer = timer
        self._clock = clock

        self._state = PollerState.STOPPED
        self._token: CancellationToken | None = None
        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._watermark: datetime | None = None

        self._timer.set_callback(self._on_timer_elapsed)

    @property
    def model(self) -> NotificationSink:
        return self._model

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is PollerState.RUNNING

    @property
    def watermark(self) -> datetime:
        if self._watermark is None:
            return self._clock() - MAX_WATERMARK_AGE
        return self._watermark

    def get_current_watermark(self) -> NotificationData:
        """
        供宿主在退出时持久化的水位记录。
        """
        return NotificationData(
            enabled=self._model.notifications_enabled,
            last_notification_date=self.watermark,
        )

    def start(self, notification_data: NotificationData | None) -> None:
        if self._token is not None:
            logger.warning("notification poller already started; ignoring start()")
            return

        self._model.notifications_enabled = True if notification_data is None else notification_data.enabled
        self._watermark = initial_watermark(notification_data, self._clock())
        token = CancellationToken()
        self._token = token
        logger.info("notification poller starting: watermark=%s", self._watermark.isoformat())

        with self._tick_lock:
            self._update_events(token)

        with self._state_lock:
            if token.is_cancelled:
                # 首次拉取已触发熔断，不再启动定时器
                return
            self._timer.start()
            self._state = PollerState.RUNNING

    def stop(self) -> None:
        with self._state_lock:
            token = self._token
            if token is None:
                return
            self._token = None
            token.cancel()
            self._model.is_icon_visible = False
            self._state = PollerState.STOPPED

        # timer.stop() 会 join 回调线程，必须在 _state_lock 之外调用
        self._timer.stop()
        logger.info("notification poller stopped: watermark=%s", self.watermark.isoformat())

    def dispose(self) -> None:
        self._timer.clear_callback()
        self.stop()
        self._timer.dispose()

    def _on_timer_elapsed(self) -> None:
        token = self._token
        if token is None:
            return
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("previous notification fetch still in flight; skipping tick")
            return
        try:
            self._update_events(token)
        finally:
            self._tick_lock.release()

    def _update_events(self, token: CancellationToken) -> None:
        project_key = self._binding.bound_project_key if self._binding.is_connected else None
        if project_key is None:
            logger.debug("no bound project; nothing to poll")
            return

        since = self.watermark
        try:
            result = self._source.get_notification_events(project_key, since, token)
        except OperationCancelledError:
            logger.debug("notification fetch cancelled: project_key=%s", project_key)
            return
        except Exception:  # noqa: BLE001
            logger.exception("notification fetch failed: project_key=%s since=%s", project_key, since.isoformat())
            return

        if token.is_cancelled:
            return

        if isinstance(result, NotificationsNotSupported):
            logger.info("notifications are not supported by the server; stopping poller: project_key=%s", project_key)
            self.stop()
            return

        self._apply(token, result)

    def _apply(self, token: CancellationToken, result: NotificationEvents) -> None:
        """
        发布一批结果。与 stop() 共用 _state_lock：stop() 之后到达的结果一律丢弃。
        """
        with self._state_lock:
            if token.is_cancelled:
                logger.debug("discarding notification result after stop: count=%d", len(result.events))
                return
            self._model.is_icon_visible = True
            events = list(result.events)
            if events:
                newest = max(e.date for e in events)
                if self._watermark is None or newest > self._watermark:
                    self._watermark = newest
                logger.info(
                    "notifications received: count=%d watermark=%s",
                    len(events),
                    self.watermark.isoformat(),
                )
            self._model.set_notification_events(events)
