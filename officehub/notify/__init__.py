from . import effects, notifications, push, settings
from .notifications import (
    create_notification,
    create_notifications,
    delete_notification,
    list_notifications,
    list_unread,
    mark_all_read,
    mark_read,
    subscribe_to_own,
    unread_count,
)
from .push import register_push_endpoint, unregister_push_endpoint
from .settings import get_settings, update_settings
from .sync import NotificationSynchronizer

__all__ = [
    "NotificationSynchronizer",
    "create_notification",
    "create_notifications",
    "delete_notification",
    "effects",
    "get_settings",
    "list_notifications",
    "list_unread",
    "mark_all_read",
    "mark_read",
    "notifications",
    "push",
    "register_push_endpoint",
    "settings",
    "subscribe_to_own",
    "unread_count",
    "unregister_push_endpoint",
    "update_settings",
]
