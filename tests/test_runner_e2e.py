from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqn.config import AppConfig, NotificationsConfig, ServerConfig
from sqn.models import NotificationData
from sqn.notify.model import NotificationIndicatorModel
from sqn.poller import NotificationPoller, SessionProjectBinding
from sqn.runner import Runner
from sqn.session import SonarQubeSession
from sqn.state.sqlite_store import SqliteStateStore
from sqn.transport import OperationName, TransportResult


@dataclass
class FakeTransport:
    responses: dict[str, list[TransportResult]]
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def execute(self, operation, connection, request, token) -> TransportResult:  # noqa: ANN001
        self.calls.append((operation, dict(request)))
        queue = self.responses[operation]
        return queue.pop(0) if len(queue) > 1 else queue[0]


@dataclass
class FakeTimer:
    starts: int = 0

    def set_callback(self, callback) -> None:  # noqa: ANN001
        pass

    def clear_callback(self) -> None:
        pass

    def start(self) -> None:
        self.starts += 1

    def stop(self) -> None:
        pass

    def dispose(self) -> None:
        pass


def _runner(tmp_path, events_result: TransportResult, project_key: str | None = "p") -> tuple[Runner, FakeTransport]:  # noqa: ANN001
    config = AppConfig(
        server=ServerConfig(url="http://localhost:9000", login_env=None, password_env=None),
        project_key=project_key,
        notifications=NotificationsConfig(),
        sqlite_path=str(tmp_path / "state.sqlite3"),
    )
    transport = FakeTransport(
        responses={
            OperationName.VALIDATE_CREDENTIALS: [TransportResult(status=200, value=True)],
            OperationName.GET_VERSION: [TransportResult(status=200, value="7.9")],
            OperationName.GET_NOTIFICATION_EVENTS: [events_result],
        }
    )
    session = SonarQubeSession(transport)
    model = NotificationIndicatorModel()
    poller = NotificationPoller(
        session,
        SessionProjectBinding(session=session, project_key=project_key),
        model,
        FakeTimer(),
    )
    runner = Runner(
        config=config,
        session=session,
        state=SqliteStateStore(config.sqlite_path),
        model=model,
        poller=poller,
    )
    runner.connect()
    return runner, transport


def test_run_once_advances_and_persists_watermark(tmp_path) -> None:  # noqa: ANN001
    """
    端到端：
    - 第一次 run_once 拉到事件，水位前移到事件时间并落盘
    - 第二次 run_once 从落盘的水位继续查询
    """
    event_date = datetime.now(tz=UTC) - timedelta(hours=1)
    events = TransportResult(
        status=200,
        value=[
            {
                "category": "QUALITY_GATE",
                "message": "Quality Gate is Red (was Green)",
                "link": "http://localhost:9000/dashboard?id=p",
                "project": "p",
                "date": event_date.isoformat(),
            }
        ],
    )
    runner, transport = _runner(tmp_path, events)

    report = runner.run_once()

    assert report.supported
    assert len(report.events) == 1
    assert report.watermark_after == event_date
    stored = runner.state.load_notification_data("p")
    assert stored is not None
    assert stored.last_notification_date == event_date

    runner.run_once()
    since = [c[1]["events_since"] for c in transport.calls if c[0] == OperationName.GET_NOTIFICATION_EVENTS]
    assert since[1] == event_date


def test_run_once_not_supported_does_not_persist(tmp_path) -> None:  # noqa: ANN001
    runner, _transport = _runner(tmp_path, TransportResult(status=404))

    report = runner.run_once()

    assert report.supported is False
    assert runner.state.load_notification_data("p") is None


def test_run_once_without_project_key_does_nothing(tmp_path) -> None:  # noqa: ANN001
    runner, transport = _runner(tmp_path, TransportResult(status=200, value=[]), project_key=None)

    report = runner.run_once()

    assert report.project_key is None
    assert OperationName.GET_NOTIFICATION_EVENTS not in [c[0] for c in transport.calls]


def test_start_and_shutdown_persist_poller_watermark(tmp_path) -> None:  # noqa: ANN001
    recent = datetime.now(tz=UTC) - timedelta(hours=2)
    runner, _transport = _runner(tmp_path, TransportResult(status=200, value=[]))
    runner.save_notification_data(NotificationData(enabled=True, last_notification_date=recent))

    runner.start()
    assert runner.poller.is_running
    assert runner.model.is_icon_visible

    runner.shutdown()

    assert not runner.poller.is_running
    stored = runner.state.load_notification_data("p")
    assert stored is not None
    assert stored.last_notification_date == recent
