from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union


class ChannelKind(str, Enum):
    GROUP = "group"
    DIRECT = "direct"


class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"
    VOICE = "voice"
    GIF = "gif"
    STICKER = "sticker"


class NotificationType(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    TASK_DUE = "task_due"
    MESSAGE = "message"
    DOCUMENT = "document"
    SYSTEM = "system"


@dataclass
class Session:
    """Authenticated identity passed explicitly into every core operation."""

    token: str
    user_id: str
    email: str
    expires_at: str
    organization_id: str | None = None


@dataclass
class Profile:
    id: str
    email: str
    name: str
    avatar_url: str | None = None
    status: str | None = None
    organization_id: str | None = None
    created_at: str | None = None


@dataclass
class Member:
    user_id: str
    name: str
    avatar_url: str | None = None


@dataclass
class GroupChannel:
    channel_id: str
    name: str
    created_by: str
    created_at: str
    color: str | None = None
    members: list[Member] = field(default_factory=list)
    kind: ChannelKind = field(default=ChannelKind.GROUP, init=False)

    @property
    def member_ids(self) -> set[str]:
        return {m.user_id for m in self.members}


@dataclass
class DirectChannel:
    """Two-party channel. ``members`` always holds exactly the pair."""

    channel_id: str
    name: str
    created_by: str
    created_at: str
    members: list[Member] = field(default_factory=list)
    kind: ChannelKind = field(default=ChannelKind.DIRECT, init=False)

    @property
    def member_ids(self) -> set[str]:
        return {m.user_id for m in self.members}

    def other(self, user_id: str) -> Member | None:
        return next((m for m in self.members if m.user_id != user_id), None)


Channel = Union[GroupChannel, DirectChannel]


@dataclass
class Author:
    user_id: str
    name: str
    avatar_url: str | None = None


@dataclass
class Attachment:
    kind: AttachmentKind | str
    file_path: str
    name: str | None = None
    file_size: int | None = None
    attachment_id: str | None = None

    @property
    def is_inline(self) -> bool:
        """Inline payloads (GIF and sticker URLs) are not storage references."""
        return self.file_path.startswith(("http://", "https://", "data:"))


@dataclass
class Message:
    message_id: str
    channel_id: str
    author: Author
    text: str
    created_at: str
    attachments: list[Attachment] = field(default_factory=list)
    updated_at: str | None = None
    is_edited: bool = False


@dataclass
class Notification:
    notification_id: str
    user_id: str
    type: NotificationType | str
    title: str
    created_at: str
    body: str | None = None
    link: str | None = None
    is_read: bool = False


@dataclass
class PushSubscription:
    id: str
    user_id: str
    endpoint: str
    p256dh: str | None = None
    auth: str | None = None
    user_agent: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class UserSettings:
    user_id: str
    sound_enabled: bool = True
    push_notifications: bool = True
    email_notifications: bool = True
    dark_mode: bool = False
    compact_mode: bool = False
    language: str = "NL"


def to_dict(obj: Any) -> dict[str, Any]:
    """Dataclass to plain dict with enum values flattened."""

    def _plain(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {k: _plain(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_plain(v) for v in value]
        return value

    return _plain(asdict(obj))
