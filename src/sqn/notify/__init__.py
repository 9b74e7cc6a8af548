from .base import NotificationSink
from .formatter import format_notification_text, format_tooltip_text
from .model import NotificationIndicatorModel

__all__ = [
    "NotificationIndicatorModel",
    "NotificationSink",
    "format_notification_text",
    "format_tooltip_text",
]
