"""
SonarQube Notifications (sqn)

与 SonarQube 服务端的有状态会话（连接、分页查询、版本特性判断、质量配置解析），
以及基于该会话的后台通知轮询器（水位维护 + 接口不支持时自动停止）。
"""

from .models import NotificationData, SonarQubeNotification
from .poller import NotificationPoller
from .session import SonarQubeSession

__all__ = [
    "NotificationData",
    "NotificationPoller",
    "SonarQubeNotification",
    "SonarQubeSession",
]
