"""Best-effort side effects for arriving notifications: sound, badge, native alert.

Every step is isolated. A failure is logged and never reaches the
synchronizer or the caller that triggered the notification.
"""

import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from officehub import config
from officehub.core.models import Notification, NotificationType, UserSettings
from officehub.events import EventBus, NotificationArrived, UnreadCountChanged

log = logging.getLogger(__name__)

GRANTED = "granted"
DENIED = "denied"
DEFAULT = "default"


@dataclass
class NativeAlert:
    tag: str
    title: str
    body: str | None = None
    link: str | None = None
    require_interaction: bool = False
    on_click: Callable[[], None] | None = None


@runtime_checkable
class Platform(Protocol):
    """Host capabilities the effects component drives."""

    def play_sound(self) -> None: ...

    def supports_badge(self) -> bool: ...

    def set_badge(self, count: int) -> None: ...

    def clear_badge(self) -> None: ...

    def alert_permission(self) -> str: ...

    def show_alert(self, alert: NativeAlert) -> None: ...


class HeadlessPlatform:
    """Platform for terminals and tests. Records what would have been shown."""

    def __init__(self, permission: str = DENIED, badge: bool = True):
        self.permission = permission
        self.badge_supported = badge
        self.sounds = 0
        self.badge: int | None = None
        self.alerts: dict[str, NativeAlert] = {}

    def play_sound(self) -> None:
        self.sounds += 1

    def supports_badge(self) -> bool:
        return self.badge_supported

    def set_badge(self, count: int) -> None:
        self.badge = count

    def clear_badge(self) -> None:
        self.badge = None

    def alert_permission(self) -> str:
        return self.permission

    def show_alert(self, alert: NativeAlert) -> None:
        # Same tag replaces the earlier alert.
        self.alerts[alert.tag] = alert


class ClientEffects:
    def __init__(
        self,
        platform: Platform,
        bus: EventBus,
        settings: Callable[[], UserSettings] | None = None,
        navigate: Callable[[str], None] | None = None,
        shown_limit: int | None = None,
    ):
        self.platform = platform
        self.settings = settings
        self.navigate = navigate
        self.shown_limit = shown_limit or config.get("notifications", "limit")
        self._shown: OrderedDict[str, None] = OrderedDict()
        self._unsubscribe = [
            bus.subscribe(NotificationArrived, self.on_arrived),
            bus.subscribe(UnreadCountChanged, self.on_count_changed),
        ]

    def _step(self, name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as e:
            log.warning(f"Notification {name} failed: {e}")

    def on_arrived(self, event: NotificationArrived) -> None:
        self._step("sound", self._play_sound)
        self._step("badge", lambda: self._update_badge(event.unread_count))
        self._step("alert", lambda: self._show_alert(event.notification))

    def on_count_changed(self, event: UnreadCountChanged) -> None:
        self._step("badge", lambda: self._update_badge(event.count))

    def _play_sound(self) -> None:
        if self.settings is not None and not self.settings().sound_enabled:
            return
        self.platform.play_sound()

    def _update_badge(self, count: int) -> None:
        if not self.platform.supports_badge():
            return
        if count > 0:
            self.platform.set_badge(count)
        else:
            self.platform.clear_badge()

    def _show_alert(self, notification: Notification) -> None:
        if self.platform.alert_permission() != GRANTED:
            return
        tag = notification.notification_id
        if tag in self._shown:
            return
        link = notification.link
        self.platform.show_alert(
            NativeAlert(
                tag=tag,
                title=notification.title,
                body=notification.body,
                link=link,
                require_interaction=notification.type == NotificationType.TASK_DUE,
                on_click=(lambda: self.navigate(link)) if self.navigate and link else None,
            )
        )
        self._shown[tag] = None
        while len(self._shown) > self.shown_limit:
            self._shown.popitem(last=False)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
