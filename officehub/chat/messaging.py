"""Message operations: history, send, edit, delete, live feeds."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from officehub import config
from officehub.backend import auth, feed, tables
from officehub.backend.feed import DELETE, INSERT, UPDATE, ChangeEvent, Subscription
from officehub.core.models import Attachment, AttachmentKind, Author, ChannelKind, Message, NotificationType, Session
from officehub.errors import EmptyMessage, Forbidden, NotFound, ValidationError
from officehub.lib.ids import now_iso
from officehub.notify import notifications

from . import attachments as attachment_refs
from . import channels

log = logging.getLogger(__name__)

NOTIFICATION_LINK = "chat"


@dataclass(frozen=True)
class MessageChange:
    """An edit or deletion seen on a channel's update feed. ``message`` is None for deletions."""

    event_type: str
    message_id: str
    message: Message | None = None


def _coerce_attachment(value: Attachment | dict) -> Attachment:
    if isinstance(value, Attachment):
        attachment = value
    else:
        kind = value.get("kind") or value.get("type")
        attachment = Attachment(
            kind=kind,
            file_path=value.get("file_path") or "",
            name=value.get("name"),
            file_size=value.get("file_size"),
        )
    try:
        attachment.kind = AttachmentKind(attachment.kind)
    except ValueError as e:
        raise ValidationError(f"Invalid attachment kind: {attachment.kind!r}") from e
    if not attachment.file_path:
        raise ValidationError("Attachment needs a file path or inline payload")
    return attachment


def _hydrate(rows: list[dict]) -> list[Message]:
    if not rows:
        return []
    ids = [row["id"] for row in rows]
    attachment_rows = tables.select(
        "chat_message_attachments", in_={"message_id": ids}, order_by=["position", "id"]
    )
    by_message: dict[str, list[Attachment]] = {message_id: [] for message_id in ids}
    for row in attachment_rows:
        by_message[row["message_id"]].append(
            Attachment(
                kind=AttachmentKind(row["kind"]),
                file_path=row["file_path"],
                name=row["name"],
                file_size=row["file_size"],
                attachment_id=row["id"],
            )
        )

    profiles = auth.get_profiles(row["user_id"] for row in rows)
    messages = []
    for row in rows:
        profile = profiles.get(row["user_id"])
        author = Author(
            user_id=row["user_id"],
            name=profile.name if profile else "Unknown",
            avatar_url=profile.avatar_url if profile else None,
        )
        messages.append(
            Message(
                message_id=row["id"],
                channel_id=row["channel_id"],
                author=author,
                text=row["text"],
                created_at=row["created_at"],
                attachments=by_message[row["id"]],
                updated_at=row["updated_at"],
                is_edited=bool(row["is_edited"]),
            )
        )
    return messages


def _fetch(message_id: str) -> Message | None:
    row = tables.select_one("chat_messages", eq={"id": message_id})
    return _hydrate([row])[0] if row else None


def get_message(session: Session, message_id: str) -> Message:
    row = tables.select_one("chat_messages", eq={"id": message_id})
    if not row:
        raise NotFound(f"Message not found: {message_id}")
    channels.require_member(session, row["channel_id"])
    return _hydrate([row])[0]


def get_messages(
    session: Session, channel_id: str, limit: int | None = None, offset: int = 0
) -> list[Message]:
    """The ``limit`` messages preceding ``offset`` from the newest end, oldest first."""
    channels.require_member(session, channel_id)
    limit = config.get("chat", "page_size") if limit is None else limit
    if limit < 0 or offset < 0:
        raise ValidationError("limit and offset must be non-negative")

    rows = tables.select(
        "chat_messages",
        eq={"channel_id": channel_id},
        order_by=["created_at", "id"],
        desc=True,
        limit=limit,
        offset=offset,
    )
    rows.reverse()
    return _hydrate(rows)


def send_message(
    session: Session,
    channel_id: str,
    text: str,
    attachments: list[Attachment | dict] | None = None,
) -> Message:
    """Persist a message with its attachments, then notify the other members.

    Notification fan-out is best-effort. Its failure is logged and the sent
    message is still returned.
    """
    auth.require(session)
    text = (text or "").strip()
    drafts = list(attachments or [])
    if not text and not drafts:
        raise EmptyMessage("Message needs text or at least one attachment")

    channel_row = channels.require_member(session, channel_id)
    drafts = [_coerce_attachment(a) for a in drafts]
    for draft in drafts:
        attachment_refs.check_reference(channel_id, draft)

    with tables.transaction():
        row = tables.insert(
            "chat_messages",
            {"channel_id": channel_id, "user_id": session.user_id, "text": text},
        )[0]
        tables.insert(
            "chat_message_attachments",
            [
                {
                    "message_id": row["id"],
                    "kind": AttachmentKind(a.kind).value,
                    "name": a.name,
                    "file_path": a.file_path,
                    "file_size": a.file_size,
                    "position": position,
                }
                for position, a in enumerate(drafts)
            ],
        )

    message = _hydrate([row])[0]
    _fan_out(session, channel_row, message)
    return message


def _preview(message: Message) -> str:
    length = config.get("chat", "preview_length")
    if message.text:
        return message.text[:length]
    names = ", ".join(a.name or AttachmentKind(a.kind).value for a in message.attachments)
    return f"Sent {names}"[:length]


def _fan_out(session: Session, channel_row: dict, message: Message) -> None:
    try:
        recipients = [uid for uid in channels.member_ids(channel_row["id"]) if uid != session.user_id]
        if not recipients:
            return
        sender = message.author.name
        if channel_row["kind"] == ChannelKind.DIRECT.value:
            title = sender
        else:
            title = f"{sender} in #{channel_row['name']}"
        notifications.create_notifications(
            recipients,
            NotificationType.MESSAGE,
            title,
            body=_preview(message),
            link=NOTIFICATION_LINK,
        )
    except Exception as e:
        log.warning(f"Fan-out failed for message {message.message_id}: {e}")


def _require_author(session: Session, message_id: str) -> dict:
    auth.require(session)
    row = tables.select_one("chat_messages", eq={"id": message_id})
    if not row:
        raise NotFound(f"Message not found: {message_id}")
    channels.require_member(session, row["channel_id"])
    if row["user_id"] != session.user_id:
        raise Forbidden("Only the author can change this message")
    return row


def edit_message(session: Session, message_id: str, text: str) -> Message:
    row = _require_author(session, message_id)
    text = (text or "").strip()
    if not text and not tables.count("chat_message_attachments", eq={"message_id": message_id}):
        raise EmptyMessage("Message needs text or at least one attachment")

    tables.update(
        "chat_messages",
        {"text": text, "is_edited": 1, "updated_at": now_iso()},
        eq={"id": row["id"]},
    )
    return _fetch(row["id"])


def delete_message(session: Session, message_id: str) -> None:
    row = _require_author(session, message_id)
    with tables.transaction():
        tables.delete("chat_message_attachments", eq={"message_id": row["id"]})
        tables.delete("chat_messages", eq={"id": row["id"]})
    log.info(f"Deleted message {message_id}")


def subscribe_to_channel(
    session: Session, channel_id: str, on_insert: Callable[[Message], None]
) -> Subscription:
    """Live feed of new messages in one channel, delivered fully hydrated."""
    channels.require_member(session, channel_id)

    def handle(event: ChangeEvent) -> None:
        message = _fetch(event.row["id"])
        if message is not None:
            on_insert(message)

    return feed.subscribe("chat_messages", handle, events={INSERT}, eq={"channel_id": channel_id})


def subscribe_to_updates(
    session: Session, channel_id: str, on_change: Callable[[MessageChange], None]
) -> Subscription:
    """Live feed of edits and deletions in one channel."""
    channels.require_member(session, channel_id)

    def handle(event: ChangeEvent) -> None:
        message_id = event.row["id"]
        if event.event_type == DELETE:
            on_change(MessageChange(DELETE, message_id))
            return
        message = _fetch(message_id)
        if message is not None:
            on_change(MessageChange(UPDATE, message_id, message))

    return feed.subscribe("chat_messages", handle, events={UPDATE, DELETE}, eq={"channel_id": channel_id})
