from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime

from .config import AppConfig
from .http_utils import HttpClient
from .models import ConnectionInformation, NotificationData, SonarQubeNotification, utc_now
from .notify.formatter import format_notification_text
from .notify.model import NotificationIndicatorModel
from .poller import NotificationPoller, SessionProjectBinding, initial_watermark
from .session import NotificationsNotSupported, SonarQubeSession
from .state.sqlite_store import SqliteStateStore
from .state.store import StateStore
from .timer import RepeatingTimer
from .transport import CancellationToken, SonarQubeHttpTransport


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunOnceReport:
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    project_key: str | None
    watermark_before: datetime | None
    watermark_after: datetime | None
    events: tuple[SonarQubeNotification, ...]
    supported: bool


@dataclass(slots=True)
class Runner:
    """
    装配后的运行单元：会话 + 状态存储 + 轮询器。

    - run_once：单次拉取（--once）
    - start / shutdown：后台轮询（--daemon），退出时持久化水位
    """

    config: AppConfig
    session: SonarQubeSession
    state: StateStore
    model: NotificationIndicatorModel
    poller: NotificationPoller

    def connection_information(self) -> ConnectionInformation:
        return ConnectionInformation(
            server_uri=self.config.server.url,
            login=self.config.resolve_env(self.config.server.login_env),
            password=self.config.resolve_env(self.config.server.password_env),
        )

    def connect(self, token: CancellationToken | None = None) -> None:
        self.session.connect(self.connection_information(), token or CancellationToken())

    def load_notification_data(self) -> NotificationData | None:
        project_key = self.config.project_key
        if project_key is None:
            return None
        self.state.ensure_schema()
        return self.state.load_notification_data(project_key)

    def save_notification_data(self, data: NotificationData) -> None:
        project_key = self.config.project_key
        if project_key is None:
            return
        self.state.ensure_schema()
        self.state.save_notification_data(project_key, data)

    def run_once(self, token: CancellationToken | None = None) -> RunOnceReport:
        """
        执行一次拉取：读取水位 -> 查询 -> 前移水位 -> 持久化。
        """
        started_at = utc_now()
        start_t = time.monotonic()
        project_key = self.config.project_key

        if project_key is None:
            logger.warning("no project_key configured; nothing to poll")
            finished_at = utc_now()
            return RunOnceReport(
                started_at=started_at,
                finished_at=finished_at,
                duration_ms=int((time.monotonic() - start_t) * 1000),
                project_key=None,
                watermark_before=None,
                watermark_after=None,
                events=(),
                supported=True,
            )

        stored = self.load_notification_data()
        watermark_before = initial_watermark(stored, started_at)
        result = self.session.get_notification_events(project_key, watermark_before, token or CancellationToken())

        events: tuple[SonarQubeNotification, ...] = ()
        watermark_after = watermark_before
        supported = not isinstance(result, NotificationsNotSupported)
        if not supported:
            logger.warning("notifications are not supported by the server: project_key=%s", project_key)
        else:
            events = result.events
            if events:
                watermark_after = max(watermark_before, max(e.date for e in events))
            self.save_notification_data(
                NotificationData(
                    enabled=True if stored is None else stored.enabled,
                    last_notification_date=watermark_after,
                )
            )

        for event in events:
            logger.info("notification:\n%s", format_notification_text(event))

        finished_at = utc_now()
        return RunOnceReport(
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=int((time.monotonic() - start_t) * 1000),
            project_key=project_key,
            watermark_before=watermark_before,
            watermark_after=watermark_after,
            events=events,
            supported=supported,
        )

    def start(self) -> None:
        self.poller.start(self.load_notification_data())

    def shutdown(self) -> None:
        """
        停止轮询并持久化当前水位；可重复调用。
        """
        data = self.poller.get_current_watermark()
        self.poller.dispose()
        self.save_notification_data(data)
        logger.info("watermark saved: last_notification_date=%s", data.last_notification_date.isoformat())


def build_runner(config: AppConfig) -> Runner:
    """
    根据配置构建可运行的 Runner。

    - 统一在这里做“配置 -> 实例”的装配，Runner 内只关注流程编排
    - 凭据只通过环境变量读取，避免落盘
    """
    http = HttpClient(
        timeout_seconds=config.server.timeout_seconds,
        verify_ssl=config.server.verify_ssl,
    )
    session = SonarQubeSession(SonarQubeHttpTransport(http))
    state = SqliteStateStore(config.sqlite_path)
    model = NotificationIndicatorModel(notifications_enabled=config.notifications.enabled)
    poller = NotificationPoller(
        session,
        SessionProjectBinding(session=session, project_key=config.project_key),
        model,
        RepeatingTimer(config.notifications.poll_interval_seconds, name="sqn-notifications"),
    )
    return Runner(config=config, session=session, state=state, model=model, poller=poller)
