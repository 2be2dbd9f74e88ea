import pytest

from officehub.core.models import Notification, NotificationType, UserSettings
from officehub.events import EventBus, NotificationArrived, UnreadCountChanged
from officehub.notify.effects import DENIED, GRANTED, ClientEffects, HeadlessPlatform, Platform


def _notification(notification_id="n1", type_=NotificationType.MESSAGE, link="chat"):
    return Notification(
        notification_id=notification_id,
        user_id="u1",
        type=type_,
        title="Alice in #general",
        created_at="2025-01-01T00:00:00.000000+00:00",
        body="hello",
        link=link,
    )


@pytest.fixture
def bus():
    return EventBus()


def test_headless_platform_satisfies_protocol():
    assert isinstance(HeadlessPlatform(), Platform)


def test_arrival_plays_sound_and_sets_badge(bus):
    platform = HeadlessPlatform()
    ClientEffects(platform, bus)

    bus.emit(NotificationArrived(_notification(), 3))

    assert platform.sounds == 1
    assert platform.badge == 3
    assert platform.alerts == {}


def test_sound_respects_settings(bus):
    platform = HeadlessPlatform()
    ClientEffects(platform, bus, settings=lambda: UserSettings(user_id="u1", sound_enabled=False))

    bus.emit(NotificationArrived(_notification(), 1))

    assert platform.sounds == 0
    assert platform.badge == 1


def test_zero_count_clears_badge(bus):
    platform = HeadlessPlatform()
    platform.set_badge(5)
    ClientEffects(platform, bus)

    bus.emit(UnreadCountChanged(0))

    assert platform.badge is None


def test_badge_skipped_when_unsupported(bus):
    platform = HeadlessPlatform(badge=False)
    ClientEffects(platform, bus)

    bus.emit(UnreadCountChanged(4))

    assert platform.badge is None


def test_alert_only_with_permission(bus):
    denied = HeadlessPlatform(permission=DENIED)
    granted = HeadlessPlatform(permission=GRANTED)
    ClientEffects(denied, bus)
    ClientEffects(granted, bus)

    bus.emit(NotificationArrived(_notification(), 1))

    assert denied.alerts == {}
    alert = granted.alerts["n1"]
    assert alert.title == "Alice in #general"
    assert alert.body == "hello"
    assert not alert.require_interaction


def test_alert_shown_once_per_notification(bus):
    platform = HeadlessPlatform(permission=GRANTED)
    shown = []
    platform.show_alert = shown.append
    ClientEffects(platform, bus)

    bus.emit(NotificationArrived(_notification(), 1))
    bus.emit(NotificationArrived(_notification(), 1))

    assert len(shown) == 1


def test_shown_tags_are_bounded(bus):
    platform = HeadlessPlatform(permission=GRANTED)
    shown = []
    platform.show_alert = shown.append
    effects = ClientEffects(platform, bus, shown_limit=3)

    for i in range(10):
        bus.emit(NotificationArrived(_notification(f"n{i}"), i + 1))
    bus.emit(NotificationArrived(_notification("n9"), 10))

    assert len(shown) == 10
    assert list(effects._shown) == ["n7", "n8", "n9"]


def test_task_due_requires_interaction(bus):
    platform = HeadlessPlatform(permission=GRANTED)
    ClientEffects(platform, bus)

    bus.emit(NotificationArrived(_notification(type_=NotificationType.TASK_DUE), 1))

    assert platform.alerts["n1"].require_interaction


def test_alert_click_navigates_to_link(bus):
    platform = HeadlessPlatform(permission=GRANTED)
    visited = []
    ClientEffects(platform, bus, navigate=visited.append)

    bus.emit(NotificationArrived(_notification(link="/tasks/42"), 1))
    platform.alerts["n1"].on_click()

    assert visited == ["/tasks/42"]


def test_failing_step_does_not_block_others(bus):
    platform = HeadlessPlatform(permission=GRANTED)

    def broken_sound():
        raise OSError("no audio device")

    platform.play_sound = broken_sound
    ClientEffects(platform, bus)

    bus.emit(NotificationArrived(_notification(), 2))

    assert platform.badge == 2
    assert "n1" in platform.alerts


def test_close_unsubscribes(bus):
    platform = HeadlessPlatform()
    effects = ClientEffects(platform, bus)

    effects.close()
    bus.emit(NotificationArrived(_notification(), 1))

    assert platform.sounds == 0
    assert bus.handler_count() == 0


def test_event_bus_isolates_handler_failures(bus):
    seen = []

    def broken(event):
        raise RuntimeError("bug")

    bus.subscribe(UnreadCountChanged, broken)
    bus.subscribe(UnreadCountChanged, seen.append)

    bus.emit(UnreadCountChanged(2))

    assert seen == [UnreadCountChanged(2)]
