"""Channel commands: list, create, open a direct channel."""

import typer

from officehub import chat
from officehub.core.models import Channel, Session, to_dict
from officehub.errors import NotFound, OfficeError

from .auth import load_session
from .format import echo_if_output, fail, format_channel_row, output_json


def resolve_channel(session: Session, ref: str) -> Channel:
    """Match a channel by id, short id, or name."""
    name = ref.lstrip("#")
    for channel in chat.list_channels(session):
        if channel.channel_id == ref or channel.channel_id.endswith(ref) or channel.name == name:
            return channel
    raise NotFound(f"Channel not found: {ref}")


def register(app: typer.Typer) -> None:
    @app.command("channels")
    def list_cmd(ctx: typer.Context):
        """List your channels."""
        try:
            session = load_session()
            channels = chat.list_channels(session)
            if output_json([to_dict(c) for c in channels], ctx):
                return
            if not channels:
                echo_if_output("No channels", ctx)
                return
            for channel in channels:
                echo_if_output(f"  {format_channel_row(channel, session.user_id)}", ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command("create")
    def create_cmd(
        ctx: typer.Context,
        name: str = typer.Argument(..., help="Channel name"),
        color: str = typer.Option(None, "--color", help="Color tag"),
        members: list[str] = typer.Option(None, "--member", "-m", help="Member id (repeatable). Default: whole organization."),
    ):
        """Create a group channel."""
        try:
            session = load_session()
            channel = chat.create_channel(session, name, color=color, member_ids=members or None)
            output_json(to_dict(channel), ctx) or echo_if_output(
                f"Created {format_channel_row(channel, session.user_id)}", ctx
            )
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command("dm")
    def dm_cmd(
        ctx: typer.Context,
        user_id: str = typer.Argument(..., help="The other user's id"),
    ):
        """Open (or reuse) the direct channel with a user."""
        try:
            session = load_session()
            channel = chat.get_or_create_direct(session, user_id)
            output_json(to_dict(channel), ctx) or echo_if_output(
                format_channel_row(channel, session.user_id), ctx
            )
        except OfficeError as e:
            raise fail(e, ctx) from e
