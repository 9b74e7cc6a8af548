from __future__ import annotations

from typing import Protocol

from ..models import NotificationData


class StateStore(Protocol):
    """
    宿主侧状态层接口：按项目保存通知水位记录（NotificationData）。
    """

    def ensure_schema(self) -> None: ...

    def load_notification_data(self, project_key: str) -> NotificationData | None: ...

    def save_notification_data(self, project_key: str, data: NotificationData) -> None: ...
