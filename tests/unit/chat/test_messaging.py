import pytest

from officehub.backend import feed, tables
from officehub.chat import attachments, channels, messaging
from officehub.core.models import Attachment, AttachmentKind
from officehub.errors import EmptyMessage, Forbidden, NotAuthenticated, NotFound, ValidationError
from officehub.notify import notifications


@pytest.fixture
def general(alice):
    return channels.create_channel(alice, "general")


def _upload(session, channel, name="q3.pdf"):
    return attachments.upload_attachment(session, channel.channel_id, name, b"data").attachment


def test_send_message_hydrates_author(alice, general):
    message = messaging.send_message(alice, general.channel_id, "  hello  ")

    assert message.text == "hello"
    assert message.author.name == "Alice"
    assert message.author.user_id == alice.user_id
    assert message.attachments == []
    assert not message.is_edited


def test_send_message_with_attachments_keeps_order(alice, general):
    message = messaging.send_message(
        alice,
        general.channel_id,
        "",
        [
            _upload(alice, general, "1.png"),
            {"type": "gif", "file_path": "https://media.example.com/cat.gif"},
        ],
    )

    assert [a.kind for a in message.attachments] == [AttachmentKind.IMAGE, AttachmentKind.GIF]
    assert message.attachments[1].is_inline
    assert all(a.attachment_id for a in message.attachments)


@pytest.mark.parametrize("text", ["", "   ", None])
def test_empty_message_rejected_before_write(alice, general, text):
    with pytest.raises(EmptyMessage):
        messaging.send_message(alice, general.channel_id, text, [])
    assert tables.count("chat_messages") == 0


def test_invalid_attachment_rejected(alice, general):
    with pytest.raises(ValidationError):
        messaging.send_message(alice, general.channel_id, "x", [{"kind": "video", "file_path": "a.mp4"}])
    with pytest.raises(ValidationError):
        messaging.send_message(alice, general.channel_id, "x", [{"kind": "file", "file_path": ""}])
    assert tables.count("chat_messages") == 0


def test_attachment_from_another_channel_rejected(alice, bob, carol, general):
    private = channels.create_channel(bob, "payroll", member_ids=[carol.user_id])
    secret = _upload(bob, private, "salary.pdf")

    with pytest.raises(Forbidden):
        messaging.send_message(alice, general.channel_id, "look", [secret])
    with pytest.raises(Forbidden):
        messaging.send_message(alice, general.channel_id, "look", [{"kind": "file", "file_path": secret.file_path}])
    assert tables.count("chat_messages") == 0


def test_attachment_never_uploaded_rejected(alice, general):
    missing = Attachment(kind="file", file_path=f"{general.channel_id}/404.pdf", name="ghost.pdf")

    with pytest.raises(ValidationError):
        messaging.send_message(alice, general.channel_id, "x", [missing])
    assert tables.count("chat_messages") == 0


def test_send_requires_membership(alice, bob, carol):
    private = channels.create_channel(alice, "private", member_ids=[bob.user_id])

    with pytest.raises(Forbidden):
        messaging.send_message(carol, private.channel_id, "let me in")


def test_send_requires_session(general):
    with pytest.raises(NotAuthenticated):
        messaging.send_message(None, general.channel_id, "hi")


def test_send_notifies_other_members(users, general):
    alice, bob, carol = users["a"], users["b"], users["c"]

    messaging.send_message(alice, general.channel_id, "x" * 80)

    assert notifications.unread_count(alice) == 0
    for member in (bob, carol):
        [n] = notifications.list_notifications(member)
        assert n.type == "message"
        assert n.title == "Alice in #general"
        assert n.body == "x" * 50
        assert n.link == "chat"


def test_direct_message_title_is_sender(alice, bob):
    dm = channels.get_or_create_direct(alice, bob.user_id)

    messaging.send_message(alice, dm.channel_id, "ping")

    [n] = notifications.list_notifications(bob)
    assert n.title == "Alice"


def test_attachment_only_preview(alice, bob):
    dm = channels.get_or_create_direct(alice, bob.user_id)

    messaging.send_message(alice, dm.channel_id, "", [_upload(alice, dm)])

    [n] = notifications.list_notifications(bob)
    assert n.body == "Sent q3.pdf"


def test_fan_out_failure_does_not_fail_send(alice, bob, general, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("notification store down")

    monkeypatch.setattr(notifications, "create_notifications", boom)

    message = messaging.send_message(alice, general.channel_id, "still sent")

    assert messaging.get_message(bob, message.message_id).text == "still sent"


def test_get_messages_pages_from_newest(alice, general):
    sent = [messaging.send_message(alice, general.channel_id, f"m{i}") for i in range(5)]

    newest = messaging.get_messages(alice, general.channel_id, limit=2)
    older = messaging.get_messages(alice, general.channel_id, limit=2, offset=2)
    oldest = messaging.get_messages(alice, general.channel_id, limit=2, offset=4)

    assert [m.text for m in newest] == ["m3", "m4"]
    assert [m.text for m in older] == ["m1", "m2"]
    assert [m.text for m in oldest] == ["m0"]
    assert [m.message_id for m in oldest + older + newest] == [m.message_id for m in sent]


def test_get_messages_default_page_size(write_config, alice):
    write_config("chat:\n  page_size: 3\n")
    general = channels.create_channel(alice, "general")
    for i in range(4):
        messaging.send_message(alice, general.channel_id, f"m{i}")

    assert len(messaging.get_messages(alice, general.channel_id)) == 3


def test_get_messages_rejects_negative_paging(alice, general):
    with pytest.raises(ValidationError):
        messaging.get_messages(alice, general.channel_id, limit=-1)


def test_get_messages_requires_membership(alice, bob, carol):
    private = channels.create_channel(alice, "private", member_ids=[bob.user_id])

    with pytest.raises(Forbidden):
        messaging.get_messages(carol, private.channel_id)


def test_edit_message_marks_edited(alice, general):
    message = messaging.send_message(alice, general.channel_id, "draft")

    edited = messaging.edit_message(alice, message.message_id, "final")

    assert edited.text == "final"
    assert edited.is_edited
    assert edited.updated_at is not None


def test_only_author_edits_or_deletes(alice, bob, general):
    message = messaging.send_message(alice, general.channel_id, "mine")

    with pytest.raises(Forbidden):
        messaging.edit_message(bob, message.message_id, "yours now")
    with pytest.raises(Forbidden):
        messaging.delete_message(bob, message.message_id)


def test_edit_to_empty_rejected_without_attachments(alice, general):
    plain = messaging.send_message(alice, general.channel_id, "text")
    with_file = messaging.send_message(
        alice, general.channel_id, "caption", [_upload(alice, general)]
    )

    with pytest.raises(EmptyMessage):
        messaging.edit_message(alice, plain.message_id, " ")
    assert messaging.edit_message(alice, with_file.message_id, "").text == ""


def test_delete_message_removes_attachments(alice, general):
    message = messaging.send_message(alice, general.channel_id, "", [_upload(alice, general)])

    messaging.delete_message(alice, message.message_id)

    assert tables.count("chat_message_attachments") == 0
    with pytest.raises(NotFound):
        messaging.get_message(alice, message.message_id)


def test_subscribe_to_channel_delivers_hydrated_messages(alice, bob, general):
    other = channels.create_channel(alice, "other")
    received = []
    messaging.subscribe_to_channel(bob, general.channel_id, received.append)

    messaging.send_message(alice, other.channel_id, "elsewhere")
    sent = messaging.send_message(alice, general.channel_id, "here", [_upload(alice, general)])

    assert [m.message_id for m in received] == [sent.message_id]
    assert len(received[0].attachments) == 1
    assert received[0].author.name == "Alice"


def test_subscribe_to_channel_requires_membership(alice, bob, carol):
    private = channels.create_channel(alice, "private", member_ids=[bob.user_id])

    with pytest.raises(Forbidden):
        messaging.subscribe_to_channel(carol, private.channel_id, print)
    assert feed.active_count() == 0


def test_subscribe_to_updates(alice, bob, general):
    changes = []
    messaging.subscribe_to_updates(bob, general.channel_id, changes.append)
    message = messaging.send_message(alice, general.channel_id, "v1")

    messaging.edit_message(alice, message.message_id, "v2")
    messaging.delete_message(alice, message.message_id)

    assert [c.event_type for c in changes] == [feed.UPDATE, feed.DELETE]
    assert changes[0].message.text == "v2"
    assert changes[1].message is None
