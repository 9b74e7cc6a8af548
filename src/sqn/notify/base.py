from __future__ import annotations

from typing import Protocol, Sequence

from ..models import SonarQubeNotification


class NotificationSink(Protocol):
    """
    通知消费方接口（面向展示层的模型）。

    约定：
    - is_icon_visible：轮询器是否处于可展示状态
    - notifications_enabled：用户是否开启通知（随水位一起持久化）
    - set_notification_events：发布一批新事件（可能为空）
    """

    is_icon_visible: bool
    notifications_enabled: bool

    def set_notification_events(self, events: Sequence[SonarQubeNotification]) -> None: ...
