from . import attachments, channels, messaging
from .attachments import UploadedAttachment, attachment_url, upload_attachment
from .channels import (
    add_members,
    create_channel,
    get_channel,
    get_or_create_direct,
    leave_channel,
    list_channels,
)
from .messaging import (
    MessageChange,
    delete_message,
    edit_message,
    get_message,
    get_messages,
    send_message,
    subscribe_to_channel,
    subscribe_to_updates,
)
from .session import ChatSession

__all__ = [
    "ChatSession",
    "MessageChange",
    "UploadedAttachment",
    "add_members",
    "attachment_url",
    "attachments",
    "channels",
    "create_channel",
    "delete_message",
    "edit_message",
    "get_channel",
    "get_message",
    "get_messages",
    "get_or_create_direct",
    "leave_channel",
    "list_channels",
    "messaging",
    "send_message",
    "subscribe_to_channel",
    "subscribe_to_updates",
    "upload_attachment",
]
