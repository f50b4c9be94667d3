"""Change notification package."""

from expense_tracker.notifications.channel import NotificationChannel, Subscription

__all__ = ["NotificationChannel", "Subscription"]
