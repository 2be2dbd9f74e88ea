"""officehub CLI: thin command wrappers over the chat and notification core."""

import logging

import typer

from officehub import config

from . import auth, channels, inbox, messages

app = typer.Typer(no_args_is_help=False, add_completion=False)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output in JSON format."),
    quiet_output: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
):
    """Office chat and notifications."""
    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj["json_output"] = json_output
    ctx.obj["quiet_output"] = quiet_output
    logging.basicConfig(
        level=config.get("logging", "level"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.resilient_parsing:
        return
    if ctx.invoked_subcommand is None:
        typer.echo("Run 'officehub --help' for available commands and options.")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run("officehub.api.main:app", host=host, port=port, access_log=False)


auth.register(app)
channels.register(app)
messages.register(app)
inbox.register(app)


def main() -> None:
    """Entry point for officehub command."""
    app()
