from urllib.parse import parse_qs, urlsplit

import pytest

from officehub.backend import storage
from officehub.chat import attachments, channels, messaging
from officehub.core.models import Attachment, AttachmentKind
from officehub.errors import Forbidden, ValidationError


@pytest.fixture
def general(alice):
    return channels.create_channel(alice, "general")


@pytest.mark.parametrize(
    "filename,kind",
    [
        ("photo.JPG", AttachmentKind.IMAGE),
        ("funny.gif", AttachmentKind.GIF),
        ("memo.webm", AttachmentKind.VOICE),
        ("report.pdf", AttachmentKind.FILE),
        ("README", AttachmentKind.FILE),
    ],
)
def test_kind_for(filename, kind):
    assert attachments.kind_for(filename) is kind


def test_upload_stores_under_channel(alice, general):
    uploaded = attachments.upload_attachment(alice, general.channel_id, "q3 report.pdf", b"%PDF-1.7")

    attachment = uploaded.attachment
    assert attachment.kind is AttachmentKind.FILE
    assert attachment.name == "q3 report.pdf"
    assert attachment.file_size == 8
    assert attachment.file_path.startswith(f"{general.channel_id}/")
    assert attachment.file_path.endswith(".pdf")
    assert storage.download("chat-attachments", attachment.file_path) == b"%PDF-1.7"
    assert "token=" in uploaded.url


def test_uploads_in_same_millisecond_do_not_collide(alice, general, monkeypatch):
    monkeypatch.setattr(attachments.time, "time", lambda: 1_700_000_000.0)

    first = attachments.upload_attachment(alice, general.channel_id, "a.png", b"1")
    second = attachments.upload_attachment(alice, general.channel_id, "b.png", b"2")

    assert first.attachment.file_path != second.attachment.file_path
    assert storage.download("chat-attachments", first.attachment.file_path) == b"1"


def test_upload_rejects_empty_and_oversized(write_config, alice):
    write_config("chat:\n  max_attachment_bytes: 4\n")
    general = channels.create_channel(alice, "general")

    with pytest.raises(ValidationError):
        attachments.upload_attachment(alice, general.channel_id, "a.txt", b"")
    with pytest.raises(ValidationError):
        attachments.upload_attachment(alice, general.channel_id, "a.txt", b"12345")


def test_upload_requires_membership(alice, bob, carol):
    private = channels.create_channel(alice, "private", member_ids=[bob.user_id])

    with pytest.raises(Forbidden):
        attachments.upload_attachment(carol, private.channel_id, "a.txt", b"x")


def test_uploaded_attachment_sent_with_message(alice, bob, general):
    uploaded = attachments.upload_attachment(alice, general.channel_id, "pic.png", b"\x89PNG")

    message = messaging.send_message(alice, general.channel_id, "", [uploaded.attachment])

    [stored] = messaging.get_message(bob, message.message_id).attachments
    assert stored.file_path == uploaded.attachment.file_path
    url = attachments.attachment_url(stored, expires_in=30)
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    bucket, _, path = parts.path.removeprefix("/storage/").partition("/")
    storage.verify(bucket, path, int(query["expires"][0]), query["token"][0])


def test_inline_attachment_url_passes_through():
    sticker = Attachment(kind="sticker", file_path="https://stickers.example.com/wave.webp")

    assert attachments.attachment_url(sticker) == "https://stickers.example.com/wave.webp"
