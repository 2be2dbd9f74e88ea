"""CLI output formatting and helpers."""

import json
from datetime import datetime

import typer

from officehub.core.models import AttachmentKind, Channel, DirectChannel, Message, Notification
from officehub.lib.ids import short_id


def format_local_time(timestamp: str) -> str:
    """Format ISO timestamp as readable local time."""
    try:
        dt = datetime.fromisoformat(timestamp)
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, TypeError):
        return timestamp


def format_channel_row(channel: Channel, user_id: str) -> str:
    if isinstance(channel, DirectChannel):
        other = channel.other(user_id)
        label = f"@{other.name}" if other else "@(unknown)"
    else:
        label = f"#{channel.name}"
    return f"{label} ({short_id(channel.channel_id)}) - {len(channel.members)} members"


def format_message_row(message: Message) -> str:
    when = format_local_time(message.created_at)
    edited = " (edited)" if message.is_edited else ""
    line = f"[{when}] {message.author.name}: {message.text}{edited}"
    for attachment in message.attachments:
        line += f"\n    [{AttachmentKind(attachment.kind).value}] {attachment.name or attachment.file_path}"
    return line


def format_notification_row(notification: Notification) -> str:
    marker = " " if notification.is_read else "*"
    when = format_local_time(notification.created_at)
    body = f" - {notification.body}" if notification.body else ""
    return f"{marker} {short_id(notification.notification_id)} [{when}] {notification.title}{body}"


def output_json(data, ctx: typer.Context):
    """Output data as JSON if requested. Returns True if output, False otherwise."""
    if ctx.obj.get("json_output"):
        typer.echo(json.dumps(data, indent=2))
        return True
    return False


def should_output(ctx: typer.Context) -> bool:
    """Check if output should be printed (not quiet mode)."""
    return not ctx.obj.get("quiet_output")


def echo_if_output(msg: str, ctx: typer.Context):
    """Echo message only if not in quiet mode."""
    if should_output(ctx):
        typer.echo(msg)


def fail(e: Exception, ctx: typer.Context) -> typer.Exit:
    output_json({"status": "error", "message": str(e)}, ctx) or echo_if_output(f"❌ {e}", ctx)
    return typer.Exit(code=1)
