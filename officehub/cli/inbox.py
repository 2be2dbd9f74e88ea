"""Notification commands: inbox, read, relay worker."""

import logging
import threading

import typer

from officehub import notify
from officehub.backend import feed
from officehub.core.models import Session, to_dict
from officehub.errors import NotFound, OfficeError
from officehub.notify import push

from .auth import load_session
from .format import echo_if_output, fail, format_notification_row, output_json

log = logging.getLogger(__name__)


def resolve_notification(session: Session, ref: str) -> str:
    for notification in notify.list_unread(session) + notify.list_notifications(session):
        if notification.notification_id == ref or notification.notification_id.endswith(ref):
            return notification.notification_id
    raise NotFound(f"Notification not found: {ref}")


def register(app: typer.Typer) -> None:
    @app.command()
    def inbox(
        ctx: typer.Context,
        unread: bool = typer.Option(False, "--unread", "-u", help="Only unread"),
        limit: int = typer.Option(50, "--limit", "-n", help="How many to show"),
    ):
        """Show your notifications, newest first."""
        try:
            session = load_session()
            items = notify.list_unread(session) if unread else notify.list_notifications(session, limit=limit)
            count = notify.unread_count(session)
            if output_json({"unread": count, "notifications": [to_dict(n) for n in items]}, ctx):
                return
            echo_if_output(f"INBOX ({count} unread):", ctx)
            for notification in items:
                echo_if_output(f"  {format_notification_row(notification)}", ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command()
    def read(
        ctx: typer.Context,
        notification: str = typer.Argument(None, help="Notification id or short id"),
        all_: bool = typer.Option(False, "--all", help="Mark every notification read"),
    ):
        """Mark notifications read."""
        try:
            session = load_session()
            if all_:
                updated = notify.mark_all_read(session)
                output_json({"status": "success", "updated": updated}, ctx) or echo_if_output(
                    f"Marked {updated} read", ctx
                )
                return
            if not notification:
                raise NotFound("Give a notification id or --all")
            notification_id = resolve_notification(session, notification)
            notify.mark_read(session, notification_id)
            output_json({"status": "success", "id": notification_id}, ctx) or echo_if_output("Marked read", ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command()
    def relay(
        poll_interval: float = typer.Option(None, "--interval", help="Seconds between change-log polls"),
    ):
        """Run the push relay worker until interrupted."""
        worker = push.PushRelay()
        if not worker.sender.configured:
            log.warning("VAPID keys not configured; notifications will not be pushed")
        subscription = push.watch(worker)
        stop = threading.Event()
        log.info("Push relay started")
        try:
            feed.listen(poll_interval, stop)
        except KeyboardInterrupt:
            stop.set()
        finally:
            subscription.cancel()
            worker.sender.close()
            log.info("Push relay stopped")
