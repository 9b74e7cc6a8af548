from __future__ import annotations

from ..models import SonarQubeNotification


def format_notification_text(notification: SonarQubeNotification) -> str:
    """
    单条通知的文本格式，用于日志与命令行输出。
    """
    lines = [
        f"[{notification.category or '-'}] {notification.message}",
        f"project: {notification.project or '-'}",
        f"date: {notification.date.isoformat()}",
    ]
    if notification.link:
        lines.append(f"link: {notification.link}")
    return "\n".join(lines)


def format_tooltip_text(has_unread_events: bool, notifications_enabled: bool) -> str:
    if not notifications_enabled:
        return "SonarQube notifications are disabled"
    if has_unread_events:
        return "You have new SonarQube events"
    return "No new SonarQube events"
