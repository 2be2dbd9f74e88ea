"""Message commands: send and read history."""

from pathlib import Path

import typer

from officehub import chat
from officehub.core.models import to_dict
from officehub.errors import OfficeError

from .auth import load_session
from .channels import resolve_channel
from .format import echo_if_output, fail, format_message_row, output_json


def register(app: typer.Typer) -> None:
    @app.command()
    def send(
        ctx: typer.Context,
        channel: str = typer.Argument(..., help="Channel id, short id or name"),
        text: str = typer.Argument("", help="Message text"),
        attach: list[Path] = typer.Option(None, "--attach", "-a", help="File to attach (repeatable)"),
    ):
        """Send a message to a channel."""
        try:
            session = load_session()
            target = resolve_channel(session, channel)
            drafts = []
            for path in attach or []:
                uploaded = chat.upload_attachment(session, target.channel_id, path.name, path.read_bytes())
                drafts.append(uploaded.attachment)
            message = chat.send_message(session, target.channel_id, text, drafts)
            output_json(to_dict(message), ctx) or echo_if_output(f"Sent to {channel}", ctx)
        except (OfficeError, OSError) as e:
            raise fail(e, ctx) from e

    @app.command()
    def messages(
        ctx: typer.Context,
        channel: str = typer.Argument(..., help="Channel id, short id or name"),
        limit: int = typer.Option(50, "--limit", "-n", help="Messages per page"),
        offset: int = typer.Option(0, "--offset", help="Skip this many of the newest messages"),
    ):
        """Show channel history, oldest first."""
        try:
            session = load_session()
            target = resolve_channel(session, channel)
            history = chat.get_messages(session, target.channel_id, limit=limit, offset=offset)
            if output_json([to_dict(m) for m in history], ctx):
                return
            if not history:
                echo_if_output("No messages", ctx)
                return
            for message in history:
                echo_if_output(format_message_row(message), ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e
