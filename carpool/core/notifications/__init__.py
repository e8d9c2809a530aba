# carpool/core/notifications/__init__.py
"""
Уведомления пользователей.
"""

from carpool.core.notifications.service import NotificationService, Notifier

__all__ = ["NotificationService", "Notifier"]
