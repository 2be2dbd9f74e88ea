"""End-to-end flows across chat, notifications and the store."""

import pytest

from officehub import chat, notify
from officehub.backend import auth, feed, tables
from officehub.chat import ChatSession
from officehub.errors import EmptyMessage


def test_send_to_two_member_channel_notifies_the_other(test_office):
    org = auth.create_organization("Acme Accounting")
    a = auth.sign_up("a@example.com", "password-a", "A", org)
    b = auth.sign_up("b@example.com", "password-b", "B", org)
    general = chat.create_channel(a, "general")
    assert general.member_ids == {a.user_id, b.user_id}

    chat.send_message(a, general.channel_id, "Invoice ready")

    [message] = chat.get_messages(a, general.channel_id, 50, 0)
    assert message.text == "Invoice ready"
    assert message.attachments == []
    [row] = tables.select("notifications", eq={"user_id": b.user_id})
    assert row["type"] == "message"
    assert row["body"] == "Invoice ready"
    assert tables.count("notifications", eq={"user_id": a.user_id}) == 0


def test_direct_channel_opened_twice_is_the_same(alice, bob):
    first = chat.get_or_create_direct(alice, bob.user_id)
    second = chat.get_or_create_direct(alice, bob.user_id)

    assert first.channel_id == second.channel_id
    assert first.member_ids == second.member_ids == {alice.user_id, bob.user_id}


def test_mark_all_read_clears_three_unread(bob):
    for title in ("Task assigned", "Document uploaded", "Reminder"):
        notify.create_notification(bob.user_id, "system", title)
    assert notify.unread_count(bob) == 3

    notify.mark_all_read(bob)

    assert notify.unread_count(bob) == 0
    rows = tables.select("notifications", eq={"user_id": bob.user_id})
    assert len(rows) == 3
    assert all(row["is_read"] == 1 for row in rows)


def test_empty_message_rejected_without_write(alice):
    general = chat.create_channel(alice, "general")
    chat.send_message(alice, general.channel_id, "existing")
    before = len(chat.get_messages(alice, general.channel_id))

    with pytest.raises(EmptyMessage):
        chat.send_message(alice, general.channel_id, "", [])

    assert len(chat.get_messages(alice, general.channel_id)) == before
    assert tables.count("chat_messages") == 1


def test_duplicate_live_delivery_leaves_one_entry(alice, bob):
    general = chat.create_channel(alice, "general")
    session = ChatSession(bob)
    session.set_active_channel(general.channel_id)

    row = tables.insert(
        "chat_messages", {"id": "m1", "channel_id": general.channel_id, "user_id": alice.user_id, "text": "hi"}
    )[0]
    feed.publish(feed.ChangeEvent(feed.INSERT, "chat_messages", new=row))

    assert [m.message_id for m in session.messages] == ["m1"]


def test_group_without_member_list_includes_whole_organization(users):
    a, b, c = users["a"], users["b"], users["c"]

    channel = chat.create_channel(a, "Audit 2024")

    assert channel.name == "Audit 2024"
    assert channel.member_ids == {a.user_id, b.user_id, c.user_id}
