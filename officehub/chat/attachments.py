"""Chat attachment upload and signed access."""

import logging
import time
from dataclasses import dataclass
from pathlib import PurePosixPath

from officehub import config
from officehub.backend import storage
from officehub.core.models import Attachment, AttachmentKind, Session
from officehub.errors import Forbidden, ValidationError

from . import channels

log = logging.getLogger(__name__)

_IMAGE = {"png", "jpg", "jpeg", "webp", "bmp", "heic", "svg"}
_VOICE = {"webm", "ogg", "mp3", "m4a", "wav", "opus"}


@dataclass
class UploadedAttachment:
    attachment: Attachment
    url: str


def kind_for(filename: str) -> AttachmentKind:
    ext = PurePosixPath(filename).suffix.lstrip(".").lower()
    if ext == "gif":
        return AttachmentKind.GIF
    if ext in _IMAGE:
        return AttachmentKind.IMAGE
    if ext in _VOICE:
        return AttachmentKind.VOICE
    return AttachmentKind.FILE


def upload_attachment(session: Session, channel_id: str, filename: str, data: bytes) -> UploadedAttachment:
    """Store a file for a later ``send_message``. Returns the draft and a signed URL."""
    channels.require_member(session, channel_id)
    name = PurePosixPath(filename or "").name
    if not name:
        raise ValidationError("Attachment filename is required")
    if not data:
        raise ValidationError("Attachment is empty")
    limit = config.get("chat", "max_attachment_bytes")
    if len(data) > limit:
        raise ValidationError(f"Attachment exceeds {limit} bytes")

    bucket = config.get("chat", "attachments_bucket")
    ext = PurePosixPath(name).suffix.lstrip(".").lower() or "bin"
    millis = int(time.time() * 1000)
    path = f"{channel_id}/{millis}.{ext}"
    while storage.exists(bucket, path):
        millis += 1
        path = f"{channel_id}/{millis}.{ext}"
    storage.upload(bucket, path, data)
    log.info(f"Uploaded attachment {name} ({len(data)} bytes) to {bucket}/{path}")

    attachment = Attachment(kind=kind_for(name), file_path=path, name=name, file_size=len(data))
    return UploadedAttachment(attachment=attachment, url=storage.signed_url(bucket, path))


def check_reference(channel_id: str, attachment: Attachment) -> None:
    """Stored attachments must point at an object uploaded to this channel."""
    if attachment.is_inline:
        return
    if not attachment.file_path.startswith(f"{channel_id}/"):
        raise Forbidden(f"Attachment {attachment.file_path!r} does not belong to channel {channel_id}")
    if not storage.exists(config.get("chat", "attachments_bucket"), attachment.file_path):
        raise ValidationError(f"Attachment not uploaded: {attachment.file_path!r}")


def attachment_url(attachment: Attachment, expires_in: int | None = None) -> str:
    if attachment.is_inline:
        return attachment.file_path
    return storage.signed_url(config.get("chat", "attachments_bucket"), attachment.file_path, expires_in)
