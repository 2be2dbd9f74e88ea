"""Channel operations: list, create, direct, membership."""

import logging

from officehub.backend import auth, tables
from officehub.core.models import Channel, ChannelKind, DirectChannel, GroupChannel, Member, Session
from officehub.errors import Conflict, Forbidden, NotFound, ValidationError
from officehub.lib.ids import now_iso

log = logging.getLogger(__name__)

DIRECT_NAME = "DM"


def dm_key(a: str, b: str) -> str:
    """Canonical key for an unordered pair of identities."""
    return ":".join(sorted((a, b)))


def _to_channel_id(channel: str | Channel) -> str:
    return channel if isinstance(channel, str) else channel.channel_id


def _members_for(channel_ids: list[str]) -> dict[str, list[Member]]:
    rows = tables.select(
        "chat_channel_members", in_={"channel_id": channel_ids}, order_by=["joined_at", "id"]
    )
    profiles = auth.get_profiles(row["user_id"] for row in rows)
    members: dict[str, list[Member]] = {channel_id: [] for channel_id in channel_ids}
    for row in rows:
        profile = profiles.get(row["user_id"])
        name = profile.name if profile else "Unknown"
        avatar = profile.avatar_url if profile else None
        members[row["channel_id"]].append(Member(user_id=row["user_id"], name=name, avatar_url=avatar))
    return members


def _row_to_channel(row: dict, members: list[Member]) -> Channel:
    kind = ChannelKind(row["kind"])
    if kind is ChannelKind.DIRECT:
        return DirectChannel(
            channel_id=row["id"],
            name=row["name"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            members=members,
        )
    return GroupChannel(
        channel_id=row["id"],
        name=row["name"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        color=row["color"],
        members=members,
    )


def _load(row: dict) -> Channel:
    return _row_to_channel(row, _members_for([row["id"]])[row["id"]])


def is_member(channel_id: str, user_id: str) -> bool:
    return tables.count("chat_channel_members", eq={"channel_id": channel_id, "user_id": user_id}) > 0


def require_member(session: Session, channel_id: str) -> dict:
    """Channel row if the caller belongs to it. NotFound or Forbidden otherwise."""
    auth.require(session)
    row = tables.select_one("chat_channels", eq={"id": channel_id})
    if not row:
        raise NotFound(f"Channel not found: {channel_id}")
    if not is_member(channel_id, session.user_id):
        raise Forbidden(f"Not a member of channel {channel_id}")
    return row


def list_channels(session: Session) -> list[Channel]:
    auth.require(session)
    memberships = tables.select("chat_channel_members", eq={"user_id": session.user_id})
    channel_ids = [row["channel_id"] for row in memberships]
    rows = tables.select("chat_channels", in_={"id": channel_ids}, order_by=["created_at", "id"])
    members = _members_for([row["id"] for row in rows])
    return [_row_to_channel(row, members[row["id"]]) for row in rows]


def get_channel(session: Session, channel_id: str) -> Channel:
    return _load(require_member(session, channel_id))


def _validate_org_members(organization_id: str, user_ids: set[str]) -> None:
    profiles = auth.get_profiles(user_ids)
    missing = user_ids - set(profiles)
    if missing:
        raise NotFound(f"Unknown users: {sorted(missing)}")
    outsiders = [uid for uid, p in profiles.items() if p.organization_id != organization_id]
    if outsiders:
        raise ValidationError(f"Users outside the organization: {sorted(outsiders)}")


def create_channel(
    session: Session,
    name: str,
    kind: ChannelKind | str = ChannelKind.GROUP,
    color: str | None = None,
    member_ids: list[str] | None = None,
) -> Channel:
    """Create a channel in the caller's organization.

    Group channels without an explicit member list include every member of
    the organization. The creator is always a member. A direct channel needs
    exactly one other member and goes through ``get_or_create_direct``.
    """
    organization_id = auth.require_organization(session)
    try:
        kind = ChannelKind(kind)
    except ValueError as e:
        raise ValidationError(f"Invalid channel kind: {kind!r}") from e

    if kind is ChannelKind.DIRECT:
        others = set(member_ids or []) - {session.user_id}
        if len(others) != 1:
            raise ValidationError("A direct channel needs exactly one other member")
        return get_or_create_direct(session, others.pop())

    name = (name or "").strip().lstrip("#")
    if not name:
        raise ValidationError("Channel name is required")

    if member_ids is None:
        user_ids = {p.id for p in auth.list_members(organization_id)}
    else:
        user_ids = set(member_ids)
    user_ids.add(session.user_id)
    _validate_org_members(organization_id, user_ids)

    joined_at = now_iso()
    with tables.transaction():
        row = tables.insert(
            "chat_channels",
            {
                "name": name,
                "kind": kind.value,
                "color": color,
                "organization_id": organization_id,
                "created_by": session.user_id,
            },
        )[0]
        tables.insert(
            "chat_channel_members",
            [{"channel_id": row["id"], "user_id": uid, "joined_at": joined_at} for uid in sorted(user_ids)],
        )

    log.info(f"Created channel #{name} with {len(user_ids)} members")
    return _load(row)


def get_or_create_direct(session: Session, other_id: str) -> DirectChannel:
    """The single direct channel for the caller and ``other_id``.

    The store holds at most one channel per unordered pair. A caller that
    loses a concurrent create returns the winner's channel.
    """
    organization_id = auth.require_organization(session)
    if other_id == session.user_id:
        raise ValidationError("Cannot open a direct channel with yourself")
    other = auth.get_profile(other_id)
    if other.organization_id != organization_id:
        raise Forbidden(f"User {other_id} is outside the organization")

    key = dm_key(session.user_id, other_id)
    existing = tables.select_one("chat_channels", eq={"dm_key": key})
    if existing:
        return _load(existing)

    joined_at = now_iso()
    try:
        with tables.transaction():
            row = tables.insert(
                "chat_channels",
                {
                    "name": DIRECT_NAME,
                    "kind": ChannelKind.DIRECT.value,
                    "organization_id": organization_id,
                    "created_by": session.user_id,
                    "dm_key": key,
                },
            )[0]
            tables.insert(
                "chat_channel_members",
                [
                    {"channel_id": row["id"], "user_id": session.user_id, "joined_at": joined_at},
                    {"channel_id": row["id"], "user_id": other_id, "joined_at": joined_at},
                ],
            )
    except Conflict:
        row = tables.select_one("chat_channels", eq={"dm_key": key})
        if not row:
            raise
        log.info(f"Direct channel {key} created concurrently, reusing {row['id']}")

    return _load(row)


def add_members(session: Session, channel_id: str, member_ids: list[str]) -> Channel:
    row = require_member(session, channel_id)
    if row["kind"] == ChannelKind.DIRECT.value:
        raise ValidationError("Direct channel membership is fixed")

    user_ids = set(member_ids)
    _validate_org_members(row["organization_id"], user_ids)
    current = {
        r["user_id"] for r in tables.select("chat_channel_members", eq={"channel_id": channel_id})
    }
    joined_at = now_iso()
    tables.insert(
        "chat_channel_members",
        [
            {"channel_id": channel_id, "user_id": uid, "joined_at": joined_at}
            for uid in sorted(user_ids - current)
        ],
    )
    return _load(row)


def leave_channel(session: Session, channel_id: str) -> None:
    """Drop the caller's membership. The channel itself is kept even when empty."""
    row = require_member(session, channel_id)
    if row["kind"] == ChannelKind.DIRECT.value:
        raise ValidationError("Cannot leave a direct channel")
    tables.delete("chat_channel_members", eq={"channel_id": channel_id, "user_id": session.user_id})
    log.info(f"{session.user_id} left channel {channel_id}")


def member_ids(channel_id: str) -> list[str]:
    rows = tables.select("chat_channel_members", eq={"channel_id": channel_id}, order_by="joined_at")
    return [row["user_id"] for row in rows]
