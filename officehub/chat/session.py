"""Client-side chat state: channel list, active channel, message cache."""

import logging
import threading

from officehub import config
from officehub.backend.feed import DELETE, Subscription
from officehub.core.models import Attachment, Channel, DirectChannel, Message, Session
from officehub.errors import FeedUnavailable, ValidationError

from . import channels, messaging
from .messaging import MessageChange

log = logging.getLogger(__name__)


class ChatSession:
    """Chat state for one signed-in user on one client.

    Messages of the active channel are cached by id. Every apply, whether
    from a direct write or a live event, is an upsert, so duplicate delivery
    leaves one entry. At most one insert feed and one update feed exist at a
    time; switching channels cancels them before subscribing anew.
    """

    def __init__(self, session: Session, page_size: int | None = None):
        self.session = session
        self.page_size = page_size or config.get("chat", "page_size")
        self.channels: list[Channel] = []
        self.active_channel_id: str | None = None
        self.realtime = False
        self._messages: dict[str, Message] = {}
        self._has_more = False
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()

    @property
    def messages(self) -> list[Message]:
        with self._lock:
            return sorted(self._messages.values(), key=lambda m: (m.created_at, m.message_id))

    @property
    def has_more(self) -> bool:
        """Whether the last page fetched was full. A full final page reports True once more."""
        return self._has_more

    def load_channels(self) -> list[Channel]:
        self.channels = channels.list_channels(self.session)
        return self.channels

    def _remember_channel(self, channel: Channel) -> None:
        self.channels = [c for c in self.channels if c.channel_id != channel.channel_id] + [channel]

    def _cancel_subscriptions(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []
        self.realtime = False

    def set_active_channel(self, channel_id: str | None) -> list[Message]:
        self._cancel_subscriptions()
        with self._lock:
            self._messages.clear()
            self._has_more = False
            self.active_channel_id = channel_id
        if channel_id is None:
            return []

        page = messaging.get_messages(self.session, channel_id, limit=self.page_size, offset=0)
        with self._lock:
            if self.active_channel_id != channel_id:
                return self.messages
            for message in page:
                self._messages[message.message_id] = message
            self._has_more = len(page) == self.page_size

        try:
            self._subscriptions = [
                messaging.subscribe_to_channel(self.session, channel_id, self.apply),
                messaging.subscribe_to_updates(self.session, channel_id, self._on_change),
            ]
            self.realtime = True
        except FeedUnavailable as e:
            self._cancel_subscriptions()
            log.warning(f"No live feed for channel {channel_id}: {e}")
        return self.messages

    def load_older(self) -> list[Message]:
        """Fetch the page before the oldest loaded message."""
        channel_id = self.active_channel_id
        if channel_id is None or not self._has_more:
            return []
        with self._lock:
            offset = len(self._messages)
        page = messaging.get_messages(self.session, channel_id, limit=self.page_size, offset=offset)
        with self._lock:
            if self.active_channel_id != channel_id:
                return []
            added = [m for m in page if m.message_id not in self._messages]
            for message in page:
                self._messages[message.message_id] = message
            self._has_more = len(page) == self.page_size
        return added

    def apply(self, message: Message) -> bool:
        """Upsert by id. Returns True if the message was not cached before."""
        with self._lock:
            if message.channel_id != self.active_channel_id:
                return False
            is_new = message.message_id not in self._messages
            self._messages[message.message_id] = message
            return is_new

    def remove(self, message_id: str) -> bool:
        with self._lock:
            return self._messages.pop(message_id, None) is not None

    def _on_change(self, change: MessageChange) -> None:
        if change.event_type == DELETE:
            self.remove(change.message_id)
        elif change.message is not None:
            with self._lock:
                if change.message_id in self._messages:
                    self._messages[change.message_id] = change.message

    def _require_active(self) -> str:
        if self.active_channel_id is None:
            raise ValidationError("No active channel")
        return self.active_channel_id

    def send(self, text: str, attachments: list[Attachment | dict] | None = None) -> Message:
        message = messaging.send_message(self.session, self._require_active(), text, attachments)
        self.apply(message)
        return message

    def edit(self, message_id: str, text: str) -> Message:
        message = messaging.edit_message(self.session, message_id, text)
        self.apply(message)
        return message

    def delete(self, message_id: str) -> None:
        messaging.delete_message(self.session, message_id)
        self.remove(message_id)

    def create_channel(self, name: str, color: str | None = None, member_ids: list[str] | None = None) -> Channel:
        channel = channels.create_channel(self.session, name, color=color, member_ids=member_ids)
        self._remember_channel(channel)
        return channel

    def open_direct(self, other_id: str) -> DirectChannel:
        channel = channels.get_or_create_direct(self.session, other_id)
        self._remember_channel(channel)
        self.set_active_channel(channel.channel_id)
        return channel

    def subscription_count(self) -> int:
        return sum(1 for sub in self._subscriptions if sub.active)

    def close(self) -> None:
        self._cancel_subscriptions()
        with self._lock:
            self._messages.clear()
            self.active_channel_id = None
