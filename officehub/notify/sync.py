"""Client-side notification state kept in step with the store."""

import logging
import threading

from officehub import config
from officehub.backend import tables
from officehub.backend.feed import Subscription
from officehub.core.models import Notification, Session
from officehub.events import EventBus, NotificationArrived, UnreadCountChanged

from . import notifications

log = logging.getLogger(__name__)


class NotificationSynchronizer:
    """Ordered, deduplicated notifications and unread count for one identity.

    ``start`` and ``refresh`` never raise: without a live feed the state
    reflects the last successful poll. Mutations propagate their errors.
    Arrivals are published on ``bus`` as ``NotificationArrived``; side
    effects subscribe there.
    """

    def __init__(self, session: Session, bus: EventBus | None = None, limit: int | None = None):
        self.session = session
        self.bus = bus or EventBus()
        self.limit = limit or config.get("notifications", "limit")
        self.unread_count = 0
        self.realtime = False
        self.last_error: Exception | None = None
        self._items: dict[str, Notification] = {}
        self._subscription: Subscription | None = None
        self._arrivals: list[Notification] | None = None
        self._lock = threading.RLock()

    @property
    def notifications(self) -> list[Notification]:
        with self._lock:
            return sorted(
                self._items.values(),
                key=lambda n: (n.created_at, n.notification_id),
                reverse=True,
            )

    def start(self) -> bool:
        """Attach the live feed, then load state. Returns whether realtime is on.

        Subscribing first means nothing inserted during the initial load is missed.
        """
        if self._subscription is None or not self._subscription.active:
            try:
                self._subscription = notifications.subscribe_to_own(self.session, self._on_insert)
                self.realtime = True
            except Exception as e:
                self._subscription = None
                self.realtime = False
                self.last_error = e
                log.warning(f"Notifications falling back to polling: {e}")
        self.refresh()
        return self.realtime

    def refresh(self) -> bool:
        """Reload from the store, keeping live arrivals committed after the snapshot."""
        with self._lock:
            self._arrivals = []
        try:
            # One transaction so the list and the count see the same snapshot.
            with tables.transaction():
                items = notifications.list_notifications(self.session, limit=self.limit)
                count = notifications.unread_count(self.session)
        except Exception as e:
            with self._lock:
                self._arrivals = None
            self.last_error = e
            log.warning(f"Notification refresh failed: {e}")
            return False
        with self._lock:
            fresh = {n.notification_id: n for n in items}
            for n in self._arrivals or []:
                if n.notification_id not in fresh:
                    fresh[n.notification_id] = n
                    if not n.is_read:
                        count += 1
            self._arrivals = None
            self._items = fresh
            self.unread_count = count
            self._trim()
        return True

    def _trim(self) -> None:
        overflow = len(self._items) - self.limit
        if overflow > 0:
            for n in sorted(self._items.values(), key=lambda n: (n.created_at, n.notification_id))[:overflow]:
                del self._items[n.notification_id]

    def _on_insert(self, notification: Notification) -> None:
        with self._lock:
            if notification.notification_id in self._items:
                return
            self._items[notification.notification_id] = notification
            if self._arrivals is not None:
                self._arrivals.append(notification)
            if not notification.is_read:
                self.unread_count += 1
            self._trim()
            count = self.unread_count
        self.bus.emit(NotificationArrived(notification, count))

    def _set_count(self, count: int) -> None:
        with self._lock:
            self.unread_count = max(0, count)
            count = self.unread_count
        self.bus.emit(UnreadCountChanged(count))

    def mark_read(self, notification_id: str) -> None:
        notifications.mark_read(self.session, notification_id)
        with self._lock:
            item = self._items.get(notification_id)
            was_unread = item is not None and not item.is_read
            if item is not None:
                item.is_read = True
        if was_unread:
            self._set_count(self.unread_count - 1)
        elif item is None:
            self._set_count(notifications.unread_count(self.session))

    def mark_all_read(self) -> None:
        notifications.mark_all_read(self.session)
        with self._lock:
            for item in self._items.values():
                item.is_read = True
        self._set_count(0)

    def delete(self, notification_id: str) -> None:
        notifications.delete_notification(self.session, notification_id)
        with self._lock:
            item = self._items.pop(notification_id, None)
        if item is not None and not item.is_read:
            self._set_count(self.unread_count - 1)
        elif item is None:
            self._set_count(notifications.unread_count(self.session))

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.realtime = False
