"""
Integration adapters for external collaborators.
"""

from subscribe_save.infrastructure.integrations.collaborators import (
    CalendarSync,
    LoggingCalendarSync,
    LoggingNotificationSender,
    NotificationResult,
    NotificationSender,
    SideEffectDispatcher,
)


__all__ = [
    "CalendarSync",
    "LoggingCalendarSync",
    "LoggingNotificationSender",
    "NotificationResult",
    "NotificationSender",
    "SideEffectDispatcher",
]
