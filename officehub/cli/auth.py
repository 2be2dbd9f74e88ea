"""Sign up, log in, log out, and the saved CLI session."""

import json

import typer

from officehub.backend import auth
from officehub.core.models import Session, to_dict
from officehub.errors import NotAuthenticated, OfficeError
from officehub.lib import paths

from .format import echo_if_output, fail, output_json


def save_session(session: Session) -> None:
    path = paths.session_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"token": session.token}))
    path.chmod(0o600)


def clear_session() -> None:
    paths.session_file().unlink(missing_ok=True)


def load_session() -> Session:
    path = paths.session_file()
    if not path.exists():
        raise NotAuthenticated("Not logged in. Run 'officehub login'.")
    token = json.loads(path.read_text()).get("token")
    return auth.get_session(token)


def register(app: typer.Typer) -> None:
    @app.command()
    def signup(
        ctx: typer.Context,
        email: str = typer.Argument(..., help="Email address"),
        name: str = typer.Option(..., "--name", "-n", help="Display name"),
        password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
        organization: str = typer.Option(None, "--org", help="Existing organization id"),
        new_organization: str = typer.Option(None, "--new-org", help="Create an organization with this name"),
    ):
        """Create an account and log in."""
        try:
            organization_id = organization
            if organization_id is None and new_organization:
                organization_id = auth.create_organization(new_organization)
            session = auth.sign_up(email, password, name, organization_id)
            save_session(session)
            output_json(to_dict(session), ctx) or echo_if_output(f"Signed up as {session.email}", ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command()
    def login(
        ctx: typer.Context,
        email: str = typer.Argument(..., help="Email address"),
        password: str = typer.Option(..., prompt=True, hide_input=True),
    ):
        """Log in and remember the session."""
        try:
            session = auth.sign_in(email, password)
            save_session(session)
            output_json({"status": "success", "email": session.email}, ctx) or echo_if_output(
                f"Logged in as {session.email}", ctx
            )
        except OfficeError as e:
            raise fail(e, ctx) from e

    @app.command()
    def logout(ctx: typer.Context):
        """End the saved session."""
        try:
            auth.sign_out(load_session())
        except NotAuthenticated:
            pass
        clear_session()
        output_json({"status": "success"}, ctx) or echo_if_output("Logged out", ctx)

    @app.command()
    def whoami(ctx: typer.Context):
        """Show the logged-in identity."""
        try:
            session = load_session()
            profile = auth.get_profile(session.user_id)
            if output_json(to_dict(profile), ctx):
                return
            echo_if_output(f"{profile.name} <{profile.email}>", ctx)
            echo_if_output(f"  id: {profile.id}", ctx)
            echo_if_output(f"  organization: {profile.organization_id or '(none)'}", ctx)
        except OfficeError as e:
            raise fail(e, ctx) from e
