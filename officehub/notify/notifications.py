"""Notification rows: create, list, count, mark read, delete, live feed."""

import logging
from collections.abc import Callable

from officehub import config
from officehub.backend import auth, feed, tables
from officehub.backend.feed import INSERT, ChangeEvent, Subscription
from officehub.core.models import Notification, NotificationType, Session
from officehub.errors import NotFound, ValidationError

log = logging.getLogger(__name__)


def row_to_notification(row: dict) -> Notification:
    return Notification(
        notification_id=row["id"],
        user_id=row["user_id"],
        type=NotificationType(row["type"]),
        title=row["title"],
        created_at=row["created_at"],
        body=row["body"],
        link=row["link"],
        is_read=bool(row["is_read"]),
    )


def _validate(type_: NotificationType | str, title: str) -> NotificationType:
    try:
        type_ = NotificationType(type_)
    except ValueError as e:
        raise ValidationError(f"Invalid notification type: {type_!r}") from e
    if not title or not title.strip():
        raise ValidationError("Notification title is required")
    return type_


def create_notification(
    user_id: str,
    type: NotificationType | str,
    title: str,
    body: str | None = None,
    link: str | None = None,
) -> Notification:
    return create_notifications([user_id], type, title, body=body, link=link)[0]


def create_notifications(
    user_ids: list[str],
    type: NotificationType | str,
    title: str,
    body: str | None = None,
    link: str | None = None,
) -> list[Notification]:
    """One notification per recipient, written in a single transaction."""
    type_ = _validate(type, title)
    rows = tables.insert(
        "notifications",
        [
            {"user_id": uid, "type": type_.value, "title": title.strip(), "body": body, "link": link}
            for uid in user_ids
        ],
    )
    log.debug(f"Created {len(rows)} {type_.value} notifications")
    return [row_to_notification(row) for row in rows]


def list_notifications(session: Session, limit: int | None = None) -> list[Notification]:
    """Newest first."""
    auth.require(session)
    limit = config.get("notifications", "limit") if limit is None else limit
    rows = tables.select(
        "notifications",
        eq={"user_id": session.user_id},
        order_by=["created_at", "id"],
        desc=True,
        limit=limit,
    )
    return [row_to_notification(row) for row in rows]


def list_unread(session: Session) -> list[Notification]:
    auth.require(session)
    rows = tables.select(
        "notifications",
        eq={"user_id": session.user_id, "is_read": 0},
        order_by=["created_at", "id"],
        desc=True,
    )
    return [row_to_notification(row) for row in rows]


def unread_count(session: Session) -> int:
    auth.require(session)
    return tables.count("notifications", eq={"user_id": session.user_id, "is_read": 0})


def _require_own(session: Session, notification_id: str) -> dict:
    auth.require(session)
    row = tables.select_one("notifications", eq={"id": notification_id, "user_id": session.user_id})
    if not row:
        raise NotFound(f"Notification not found: {notification_id}")
    return row


def mark_read(session: Session, notification_id: str) -> None:
    _require_own(session, notification_id)
    tables.update("notifications", {"is_read": 1}, eq={"id": notification_id})


def mark_all_read(session: Session) -> int:
    """Mark every unread notification read. Returns how many changed."""
    auth.require(session)
    rows = tables.update("notifications", {"is_read": 1}, eq={"user_id": session.user_id, "is_read": 0})
    return len(rows)


def delete_notification(session: Session, notification_id: str) -> None:
    _require_own(session, notification_id)
    tables.delete("notifications", eq={"id": notification_id})


def subscribe_to_own(session: Session, on_insert: Callable[[Notification], None]) -> Subscription:
    """Live feed of notifications created for the caller."""
    auth.require(session)

    def handle(event: ChangeEvent) -> None:
        on_insert(row_to_notification(event.new))

    return feed.subscribe("notifications", handle, events={INSERT}, eq={"user_id": session.user_id})
